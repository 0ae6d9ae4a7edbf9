import pytest

from arvobill import laravel, staging, updater
from arvobill.errors import StepFailed
from arvobill.runner import DONE, NOT_SELECTED, SKIPPED, WARNING
from conftest import artisan_cmd, write_files


@pytest.fixture
def installed(monkeypatch, fake_shell, ctx):
    write_files(ctx.install_dir, {"artisan": "#!/usr/bin/env php\n", ".env": "APP_KEY=x\n"})
    synced = []
    monkeypatch.setattr(
        staging, "fetch_release", lambda url, run_ctx, mode: synced.append(mode)
    )
    monkeypatch.setattr(laravel, "_web_ids", lambda: None)
    return synced


def test_failed_update_leaves_maintenance_mode(installed, fake_shell, ctx):
    fake_shell.on("composer", "install", returncode=1, stderr="network unreachable")

    with pytest.raises(StepFailed) as excinfo:
        updater.update(ctx)

    assert excinfo.value.step_name == "PHP dependencies"
    assert fake_shell.index("composer") < fake_shell.index(*artisan_cmd(ctx, "up"))
    assert fake_shell.index(*artisan_cmd(ctx, "down")) < fake_shell.index("composer")
    assert not ctx.maintenance_engaged
    assert installed == [staging.UPDATE]


def test_successful_update_brings_app_up_once(installed, fake_shell, ctx):
    outcomes = updater.update(ctx)

    assert len(fake_shell.commands(*artisan_cmd(ctx, "down"))) == 1
    assert len(fake_shell.commands(*artisan_cmd(ctx, "up"))) == 1
    result = {o.name: o.status for o in outcomes}
    assert result["Database migrations"] == NOT_SELECTED
    assert fake_shell.commands(*artisan_cmd(ctx, "migrate")) == []


def test_declined_maintenance_never_takes_app_down(installed, fake_shell, ctx):
    ctx.use_maintenance = False

    updater.update(ctx)

    assert fake_shell.commands(*artisan_cmd(ctx, "down")) == []
    assert fake_shell.commands(*artisan_cmd(ctx, "up")) == []


def test_app_already_down_is_left_down(installed, fake_shell, ctx):
    write_files(ctx.install_dir, {"storage/framework/down": "{}"})

    outcomes = updater.update(ctx)

    assert outcomes[0].status == SKIPPED
    assert fake_shell.commands(*artisan_cmd(ctx, "down")) == []
    assert fake_shell.commands(*artisan_cmd(ctx, "up")) == []


def test_cache_clear_failure_does_not_stop_update(installed, fake_shell, ctx):
    fake_shell.on(*artisan_cmd(ctx, "optimize:clear"), returncode=1, stderr="cache locked")

    outcomes = updater.update(ctx)

    result = {o.name: o.status for o in outcomes}
    assert result["Clear caches"] == WARNING
    assert fake_shell.commands("crontab", "-")
    assert not ctx.maintenance_engaged


def test_migrations_run_when_requested(installed, fake_shell, ctx):
    ctx.run_migrations = True
    fake_shell.on(*artisan_cmd(ctx, "migrate:status"), stdout="2025_01_01_create_invoices  Pending\n")

    updater.update(ctx)

    assert fake_shell.commands(*artisan_cmd(ctx, "migrate", "--force"))
    assert fake_shell.index(*artisan_cmd(ctx, "migrate", "--force")) < fake_shell.index(
        *artisan_cmd(ctx, "up")
    )


def test_permissions_reapplied_on_every_update(installed, fake_shell, ctx, monkeypatch):
    monkeypatch.setattr(laravel, "permissions_ok", lambda run_ctx: True)

    outcomes = updater.update(ctx)

    result = {o.name: o.status for o in outcomes}
    assert result["File permissions"] == DONE
    assert fake_shell.index("composer") < fake_shell.index("chmod", "-R", "ug+rwX")
