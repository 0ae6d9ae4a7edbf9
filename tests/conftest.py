import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import pytest

from arvobill import shell
from arvobill.config import SystemPaths
from arvobill.context import DatabaseSettings, RunContext
from arvobill.errors import CommandError

Responder = Callable[[List[str], Optional[str]], Tuple[int, str, str]]


class FakeShell:
    """Stand-in for shell.run_command that records every command.

    Rules match on a command prefix; the most recently added rule wins.
    Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.envs: List[Optional[dict]] = []
        self._rules: List[Tuple[Tuple[str, ...], Responder]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        responder: Optional[Responder] = None,
    ) -> None:
        if responder is None:
            def responder(cmd, input, _r=(returncode, stdout, stderr)):
                return _r
        self._rules.insert(0, (tuple(prefix), responder))

    def __call__(
        self,
        cmd: Sequence[str],
        check: bool = True,
        capture_output: bool = True,
        env=None,
        cwd=None,
        input: Optional[str] = None,
        timeout=None,
    ) -> subprocess.CompletedProcess:
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)
        self.inputs.append(input)
        self.envs.append(env)
        returncode, stdout, stderr = 0, "", ""
        for prefix, responder in self._rules:
            if tuple(cmd[: len(prefix)]) == prefix:
                returncode, stdout, stderr = responder(cmd, input)
                break
        if returncode != 0 and check:
            raise CommandError(cmd, returncode, stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def commands(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == tuple(prefix)]

    def index(self, *prefix: str) -> int:
        for i, cmd in enumerate(self.calls):
            if tuple(cmd[: len(prefix)]) == tuple(prefix):
                return i
        raise AssertionError(f"command {prefix} was never run; ran {self.calls}")


@pytest.fixture
def fake_shell(monkeypatch) -> FakeShell:
    fake = FakeShell()
    monkeypatch.setattr(shell, "run_command", fake)
    return fake


@pytest.fixture
def system_paths(tmp_path: Path) -> SystemPaths:
    root = tmp_path / "system"
    ca_bundle = root / "etc" / "ssl" / "certs" / "ca-certificates.crt"
    ca_bundle.parent.mkdir(parents=True)
    ca_bundle.write_text("-----BEGIN CERTIFICATE-----\n")
    return SystemPaths(
        os_release=root / "etc" / "os-release",
        nginx_sites_available=root / "etc" / "nginx" / "sites-available",
        nginx_sites_enabled=root / "etc" / "nginx" / "sites-enabled",
        nginx_conf_dir=root / "etc" / "nginx",
        supervisor_conf_dir=root / "etc" / "supervisor" / "conf.d",
        letsencrypt_live=root / "etc" / "letsencrypt" / "live",
        mysql_socket=root / "run" / "mysqld" / "mysqld.sock",
        php_fpm_socket=root / "run" / "php" / "php8.2-fpm.sock",
        ca_bundles=[ca_bundle],
        nvm_dir=root / "root" / ".nvm",
        extra_ca_cert=root / "usr" / "local" / "share" / "ca-certificates" / "extra.crt",
    )


@pytest.fixture
def ctx(tmp_path: Path, system_paths: SystemPaths) -> RunContext:
    install_dir = tmp_path / "www" / "arvobill"
    install_dir.mkdir(parents=True)
    return RunContext(
        install_dir=install_dir,
        database=DatabaseSettings(name="arvobill", user="arvobill", password="s3cret"),
        domain="billing.example.com",
        admin_email="ops@example.com",
        paths=system_paths,
    )


def artisan_cmd(ctx: RunContext, *args: str) -> Tuple[str, ...]:
    return ("php", str(ctx.artisan_path), *args)


def write_files(root: Path, files: dict) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
