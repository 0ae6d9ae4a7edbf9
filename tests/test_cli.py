import pytest
from click.testing import CliRunner

from arvobill import cli
from arvobill.errors import CommandError, PreconditionError, StepFailed


@pytest.fixture(autouse=True)
def quiet_setup(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "LOG_FILE", str(tmp_path / "setup.log"))
    monkeypatch.setattr(cli, "setup_signal_handlers", lambda: None)


def test_step_failure_exits_with_status_one(capsys):
    def flow():
        raise StepFailed("PHP dependencies", CommandError(["composer", "install"], 2))

    with pytest.raises(SystemExit) as excinfo:
        cli.run_flow(flow)

    assert excinfo.value.code == 1
    assert "PHP dependencies" in capsys.readouterr().out


def test_precondition_failure_exits_with_status_one():
    def flow():
        raise PreconditionError("This tool must be run as root (use sudo).")

    with pytest.raises(SystemExit) as excinfo:
        cli.run_flow(flow)

    assert excinfo.value.code == 1


def test_interrupt_exits_with_130():
    def flow():
        raise KeyboardInterrupt

    with pytest.raises(SystemExit) as excinfo:
        cli.run_flow(flow)

    assert excinfo.value.code == 130


def test_successful_flow_returns_normally(tmp_path):
    ran = []

    cli.run_flow(lambda: ran.append(True))

    assert ran == [True]
    assert (tmp_path / "setup.log").exists()


def test_install_command_runs_install_flow(monkeypatch):
    ran = []
    monkeypatch.setattr(cli, "install_flow", lambda: ran.append("install"))

    result = CliRunner().invoke(cli.cli, ["install"])

    assert result.exit_code == 0
    assert ran == ["install"]


def test_menu_exit_choice_does_nothing(monkeypatch):
    ran = []
    monkeypatch.setattr(cli, "install_flow", lambda: ran.append("install"))
    monkeypatch.setattr(cli, "update_flow", lambda: ran.append("update"))

    result = CliRunner().invoke(cli.cli, [], input="3\n")

    assert result.exit_code == 0
    assert ran == []


def test_signal_handler_exits_with_signal_code():
    with pytest.raises(SystemExit) as excinfo:
        cli.signal_handler(15, None)

    assert excinfo.value.code == 143
