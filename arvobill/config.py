from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

# ----------------------------------------------------------------
# Release and Install Defaults
# ----------------------------------------------------------------
ZIP_URL: str = (
    "https://github.com/Reflex1171/ArvobillZip/raw/refs/heads/main/ArvoBill-main.zip"
)
ARCHIVE_ROOT_NAME: str = "ArvoBill-main"
DEFAULT_INSTALL_DIR: str = "/var/www/arvobill"
LOG_FILE: str = "/var/log/arvobill-setup.log"
OPERATION_TIMEOUT: int = 1800  # composer and npm builds can be slow
DOWNLOAD_TIMEOUT: int = 60
EXTRA_CA_BUNDLE_URL: str = "https://curl.se/ca/cacert.pem"
MIN_UBUNTU_MAJOR: int = 22

PHP_VERSION: str = "8.2"
NODE_MAJOR: str = "20"
WEB_USER: str = "www-data"
WEB_GROUP: str = "www-data"

DEFAULT_DB_NAME: str = "arvobill"
DEFAULT_DB_USER: str = "arvobill"
DEFAULT_DB_HOST: str = "127.0.0.1"
DEFAULT_DB_PORT: int = 3306

SITE_NAME: str = "arvobill"
WORKER_NAME: str = "arvobill-worker"

# Paths kept across updates. Matched against POSIX paths relative to the
# install dir; anything below a match is protected as well.
SYNC_EXCLUDES: Tuple[str, ...] = (
    ".env",
    "storage/*",
    "bootstrap/cache/*",
    "public/storage",
    "vendor",
    "node_modules",
)

# ----------------------------------------------------------------
# Packages and Services
# ----------------------------------------------------------------
BASE_PACKAGES: List[str] = [
    "ca-certificates",
    "curl",
    "unzip",
    "git",
    "nginx",
    "mariadb-server",
    f"php{PHP_VERSION}-fpm",
    f"php{PHP_VERSION}-cli",
    f"php{PHP_VERSION}-mysql",
    f"php{PHP_VERSION}-mbstring",
    f"php{PHP_VERSION}-xml",
    f"php{PHP_VERSION}-curl",
    f"php{PHP_VERSION}-zip",
    f"php{PHP_VERSION}-bcmath",
    f"php{PHP_VERSION}-gd",
    f"php{PHP_VERSION}-intl",
    "composer",
    "nodejs",
    "npm",
    "cron",
    "supervisor",
    "certbot",
]

DB_CLIENT_CANDIDATES: List[str] = [
    "mariadb-client",
    "mysql-client",
    "default-mysql-client",
]
DB_SERVICE_CANDIDATES: List[str] = ["mariadb", "mysql", "mysqld"]
PHP_FPM_SERVICE_CANDIDATES: List[str] = [f"php{PHP_VERSION}-fpm", "php-fpm"]
SUPERVISOR_SERVICE_CANDIDATES: List[str] = ["supervisor", "supervisord"]
CRON_SERVICE_CANDIDATES: List[str] = ["cron", "crond"]


@dataclass
class SystemPaths:
    """Host locations touched by the installer."""

    os_release: Path = field(default_factory=lambda: Path("/etc/os-release"))
    nginx_sites_available: Path = field(
        default_factory=lambda: Path("/etc/nginx/sites-available")
    )
    nginx_sites_enabled: Path = field(
        default_factory=lambda: Path("/etc/nginx/sites-enabled")
    )
    nginx_conf_dir: Path = field(default_factory=lambda: Path("/etc/nginx"))
    supervisor_conf_dir: Path = field(
        default_factory=lambda: Path("/etc/supervisor/conf.d")
    )
    letsencrypt_live: Path = field(
        default_factory=lambda: Path("/etc/letsencrypt/live")
    )
    mysql_socket: Path = field(
        default_factory=lambda: Path("/var/run/mysqld/mysqld.sock")
    )
    php_fpm_socket: Path = field(
        default_factory=lambda: Path(f"/run/php/php{PHP_VERSION}-fpm.sock")
    )
    ca_bundles: List[Path] = field(
        default_factory=lambda: [
            Path("/etc/ssl/certs/ca-certificates.crt"),
            Path("/etc/ssl/cert.pem"),
        ]
    )
    extra_ca_cert: Path = field(
        default_factory=lambda: Path("/usr/local/share/ca-certificates/arvobill-extra.crt")
    )
    nvm_dir: Path = field(default_factory=lambda: Path("/root/.nvm"))

    @property
    def site_config(self) -> Path:
        return self.nginx_sites_available / f"{SITE_NAME}.conf"

    @property
    def site_link(self) -> Path:
        return self.nginx_sites_enabled / f"{SITE_NAME}.conf"

    @property
    def worker_config(self) -> Path:
        return self.supervisor_conf_dir / f"{WORKER_NAME}.conf"
