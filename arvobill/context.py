from dataclasses import dataclass, field
from pathlib import Path
from typing import Set

from arvobill.config import (
    DEFAULT_DB_HOST,
    DEFAULT_DB_NAME,
    DEFAULT_DB_PORT,
    DEFAULT_DB_USER,
    DEFAULT_INSTALL_DIR,
    SystemPaths,
)


@dataclass
class DatabaseSettings:
    name: str = DEFAULT_DB_NAME
    user: str = DEFAULT_DB_USER
    password: str = ""
    host: str = DEFAULT_DB_HOST
    port: int = DEFAULT_DB_PORT

    def __repr__(self) -> str:
        return (
            f"DatabaseSettings(name={self.name!r}, user={self.user!r}, "
            f"password='***', host={self.host!r}, port={self.port!r})"
        )


@dataclass
class RunContext:
    """State threaded through every step of one installer or updater run.

    Created from the prompts at start-up and discarded at exit; nothing in
    it is persisted. The durable configuration lives in the app's .env.
    """

    install_dir: Path = field(default_factory=lambda: Path(DEFAULT_INSTALL_DIR))
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    domain: str = ""
    admin_email: str = ""

    configure_ssl: bool = False
    configure_cron: bool = True
    configure_queue: bool = True
    use_maintenance: bool = True
    run_migrations: bool = False
    allow_non_empty_dir: bool = False
    overwrite_site_config: bool = False

    maintenance_engaged: bool = False
    # config files this run wrote; rewriting them needs no confirmation
    written_files: Set[Path] = field(default_factory=set)
    paths: SystemPaths = field(default_factory=SystemPaths)

    @property
    def env_file(self) -> Path:
        return self.install_dir / ".env"

    @property
    def artisan_path(self) -> Path:
        return self.install_dir / "artisan"

    @property
    def public_dir(self) -> Path:
        return self.install_dir / "public"

    @property
    def app_url(self) -> str:
        if not self.domain:
            return "http://localhost"
        scheme = "https" if self.configure_ssl else "http"
        return f"{scheme}://{self.domain}"
