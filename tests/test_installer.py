import os

import pytest

from arvobill import database, installer, laravel, staging
from arvobill.envfile import read_env, set_env_value
from arvobill.errors import StepFailed
from arvobill.runner import DONE, NOT_SELECTED, SKIPPED
from conftest import artisan_cmd, write_files

WEB_STEPS = ("Web server site", "TLS certificate", "HTTPS site")


@pytest.fixture
def host(monkeypatch, fake_shell, ctx):
    """A provisioned Ubuntu host whose commands leave the state they would."""
    install_dir = ctx.install_dir
    state = {"crontab": "", "db_ready": False}

    fake_shell.on("dpkg-query", stdout="install ok installed")
    fake_shell.on("apt-cache", "show", stdout="Package: php8.2-fpm\n")

    def fetch(url, run_ctx, mode):
        write_files(
            run_ctx.install_dir,
            {"artisan": "#!/usr/bin/env php\n", ".env.example": "APP_NAME=Laravel\nAPP_KEY=\n"},
        )

    monkeypatch.setattr(staging, "fetch_release", fetch)

    def provision(run_ctx):
        state["db_ready"] = True

    monkeypatch.setattr(database, "provision_database", provision)
    monkeypatch.setattr(database, "database_ready", lambda run_ctx: state["db_ready"])
    monkeypatch.setattr(laravel, "_web_ids", lambda: None)

    def creates(rel, content=""):
        def responder(cmd, input):
            write_files(install_dir, {rel: content})
            return 0, "", ""

        return responder

    fake_shell.on("composer", "install", responder=creates("vendor/autoload.php"))
    fake_shell.on("npm", "install", responder=creates("node_modules/.package-lock.json"))
    fake_shell.on("npm", "run", "build", responder=creates("public/build/manifest.json"))
    fake_shell.on(*artisan_cmd(ctx, "optimize"), responder=creates("bootstrap/cache/config.php"))

    def key_generate(cmd, input):
        set_env_value(install_dir / ".env", "APP_KEY", "base64:Zm9vYmFy")
        return 0, "", ""

    def storage_link(cmd, input):
        (install_dir / "public").mkdir(exist_ok=True)
        os.symlink(install_dir / "storage" / "app" / "public", install_dir / "public" / "storage")
        return 0, "", ""

    fake_shell.on(*artisan_cmd(ctx, "key:generate"), responder=key_generate)
    fake_shell.on(*artisan_cmd(ctx, "storage:link"), responder=storage_link)

    def crontab_read(cmd, input):
        return (0, state["crontab"], "") if state["crontab"] else (1, "", "no crontab")

    def crontab_write(cmd, input):
        state["crontab"] = input
        return 0, "", ""

    fake_shell.on("crontab", "-l", responder=crontab_read)
    fake_shell.on("crontab", "-", responder=crontab_write)
    fake_shell.on("supervisorctl", "status", stdout="arvobill-worker:arvobill-worker_00 RUNNING\n")

    def certbot(cmd, input):
        live = ctx.paths.letsencrypt_live / ctx.domain
        write_files(live, {"fullchain.pem": "cert", "privkey.pem": "key"})
        return 0, "", ""

    fake_shell.on("certbot", responder=certbot)
    return state


def statuses(outcomes):
    return {o.name: o.status for o in outcomes}


def test_fresh_install_without_web_server(host, fake_shell, ctx):
    ctx.configure_ssl = False
    ctx.domain = ""

    outcomes = installer.install(ctx)

    result = statuses(outcomes)
    for name in WEB_STEPS:
        assert result[name] == NOT_SELECTED
    assert result["System packages"] == SKIPPED
    assert result["Application files"] == DONE
    assert result["Queue worker"] == DONE
    assert fake_shell.commands("nginx") == []
    assert fake_shell.commands("certbot") == []
    assert not ctx.paths.site_config.exists()

    env = read_env(ctx.env_file)
    assert env["APP_URL"] == "http://localhost"
    assert env["DB_PASSWORD"] == "s3cret"
    assert env["APP_KEY"] == "base64:Zm9vYmFy"
    assert ctx.paths.worker_config.exists()

    summary = installer.build_summary(ctx)
    assert "The web server was not configured. To finish manually:" in summary
    assert str(ctx.public_dir) in summary


def test_second_run_changes_nothing(host, fake_shell, ctx, monkeypatch):
    ctx.configure_ssl = False
    installer.install(ctx)
    # ownership needs root; treat the first run's permissions as applied
    monkeypatch.setattr(laravel, "permissions_ok", lambda run_ctx: True)
    fake_shell.calls.clear()

    outcomes = installer.install(ctx)

    assert {o.status for o in outcomes} <= {SKIPPED, NOT_SELECTED}
    for prefix in (("apt-get",), ("composer",), ("npm",), ("crontab", "-"), ("supervisorctl", "reread")):
        assert fake_shell.commands(*prefix) == []
    assert fake_shell.commands(*artisan_cmd(ctx, "key:generate")) == []


def test_install_with_tls_renders_https_after_certificate(host, fake_shell, ctx):
    ctx.configure_ssl = True

    outcomes = installer.install(ctx)

    result = statuses(outcomes)
    assert [result[name] for name in WEB_STEPS] == [DONE, DONE, DONE]
    site = ctx.paths.site_config.read_text()
    assert "listen 443 ssl http2;" in site
    scratch_checks = [
        i for i, cmd in enumerate(fake_shell.calls) if cmd[:4] == ["nginx", "-t", "-q", "-c"]
    ]
    assert scratch_checks[0] < fake_shell.index("certbot") < scratch_checks[1]
    assert read_env(ctx.env_file)["APP_URL"] == "https://billing.example.com"


def test_failure_stops_install_and_reports_progress(host, fake_shell, ctx):
    fake_shell.on("composer", "install", returncode=1, stderr="Your requirements could not be resolved")

    with pytest.raises(StepFailed) as excinfo:
        installer.install(ctx)

    assert excinfo.value.step_name == "PHP dependencies"
    result = statuses(excinfo.value.outcomes)
    assert result["Environment file"] == DONE
    assert "Node dependencies" not in result
    assert fake_shell.commands("npm") == []


class EnterPrompt:
    """Answers every question with its default, as if Enter were pressed."""

    install_dir = ""

    @classmethod
    def ask(cls, prompt, default="", **kwargs):
        if "install directory" in prompt:
            return cls.install_dir
        return default


class DeclineConfirm:
    @staticmethod
    def ask(prompt, default=False, **kwargs):
        return False


@pytest.fixture
def answer_defaults(monkeypatch, ctx):
    EnterPrompt.install_dir = str(ctx.install_dir)
    monkeypatch.setattr(installer, "Prompt", EnterPrompt)
    monkeypatch.setattr(installer, "Confirm", DeclineConfirm)


def test_rerun_prompts_keep_stored_credentials(answer_defaults, ctx):
    write_files(
        ctx.install_dir,
        {
            "artisan": "#!/usr/bin/env php\n",
            ".env": (
                "APP_URL=http://billing.example.com\n"
                "DB_DATABASE=billing\nDB_USERNAME=billing_app\nDB_PASSWORD=stored-secret\n"
            ),
        },
    )

    rerun = installer.prompt_install_context(ctx.paths)

    assert rerun.database.name == "billing"
    assert rerun.database.user == "billing_app"
    assert rerun.database.password == "stored-secret"
    assert rerun.domain == "billing.example.com"
    assert rerun.app_url == "http://billing.example.com"


def test_fresh_prompts_generate_a_password(answer_defaults, ctx):
    first = installer.prompt_install_context(ctx.paths)

    assert first.database.name == "arvobill"
    assert len(first.database.password) >= 24
    assert first.domain == ""
