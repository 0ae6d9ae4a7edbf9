import os
import re
import shlex
from pathlib import Path
from typing import Dict, Union

from arvobill.config import MIN_UBUNTU_MAJOR
from arvobill.errors import PreconditionError

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))*$"
)


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("This tool must be run as root (use sudo).")


def read_os_release(path: Union[str, Path]) -> Dict[str, str]:
    path = Path(path)
    if not path.exists():
        raise PreconditionError(f"Cannot detect operating system: {path} not found.")
    values: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        parts = shlex.split(raw) if raw else [""]
        values[key] = parts[0] if parts else ""
    return values


def check_ubuntu(path: Union[str, Path]) -> str:
    """Require Ubuntu 22.04 or newer; return the pretty name for display."""
    info = read_os_release(path)
    pretty = info.get("PRETTY_NAME", "unknown")
    if info.get("ID") != "ubuntu":
        raise PreconditionError(
            f"Unsupported OS: {pretty}. Ubuntu {MIN_UBUNTU_MAJOR}.04+ is required."
        )
    version = info.get("VERSION_ID", "0")
    try:
        major = int(version.split(".")[0])
    except ValueError:
        major = 0
    if major < MIN_UBUNTU_MAJOR:
        raise PreconditionError(
            f"Unsupported Ubuntu version: {version}. "
            f"Ubuntu {MIN_UBUNTU_MAJOR}.04+ is required."
        )
    return pretty


def validate_install_dir_for_update(path: Union[str, Path]) -> Path:
    path = Path(path)
    if not path.is_dir():
        raise PreconditionError(f"Install directory does not exist: {path}")
    if not (path / "artisan").is_file():
        raise PreconditionError(f"No Laravel app detected in {path} (artisan not found)")
    if not os.access(path, os.W_OK):
        raise PreconditionError(f"Install directory is not writable: {path}")
    return path


def validate_domain(domain: str) -> str:
    domain = domain.strip().lower()
    if not _DOMAIN_RE.match(domain):
        raise PreconditionError(f"Invalid domain name: {domain!r}")
    return domain
