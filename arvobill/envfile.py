"""Upserts into a Laravel style .env file.

Each key keeps a single line. Replacing a value rewrites the line where the
key already sits, later duplicates are dropped, and a new key goes to the end.
Every other line (comments, blanks, unrelated keys) is left where it is.
"""
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Dict, List, Mapping, Union

from arvobill.render import write_atomic

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_.]*)\s*=(.*)$")
_NEEDS_QUOTES = re.compile(r"[\s#\"'$\\]")


def _unquote(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        inner = value[1:-1]
        if value[0] == '"':
            inner = inner.replace('\\"', '"').replace("\\\\", "\\")
        return inner
    # unquoted values may carry a trailing comment
    return value.split(" #", 1)[0].strip()


def format_env_value(value: str) -> str:
    """Quote a value when dotenv would otherwise misread it.

    >>> format_env_value("mysql")
    'mysql'
    >>> format_env_value("p@ss word")
    '"p@ss word"'
    >>> format_env_value('a"b')
    '"a\\\\"b"'
    """
    if value == "" or not _NEEDS_QUOTES.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def read_env(path: Union[str, Path]) -> Dict[str, str]:
    """Return the key/value pairs in path; the first occurrence of a key wins."""
    values: Dict[str, str] = {}
    path = Path(path)
    if not path.exists():
        return values
    for line in path.read_text().splitlines():
        if line.lstrip().startswith("#"):
            continue
        match = _KEY_RE.match(line)
        if match and match.group(1) not in values:
            values[match.group(1)] = _unquote(match.group(2))
    return values


def set_env_value(path: Union[str, Path], key: str, value: str) -> None:
    set_env_values(path, {key: value})


def set_env_values(path: Union[str, Path], updates: Mapping[str, str]) -> None:
    """Upsert several keys in one rewrite of the file."""
    path = Path(path)
    lines: List[str] = path.read_text().splitlines() if path.exists() else []
    pending = dict(updates)
    seen = set()
    result: List[str] = []

    for line in lines:
        match = _KEY_RE.match(line)
        key = match.group(1) if match and not line.lstrip().startswith("#") else None
        if key is None or key not in updates:
            result.append(line)
            continue
        if key in seen:
            logger.debug(f"Dropping duplicate {key} line in {path}")
            continue
        seen.add(key)
        result.append(f"{key}={format_env_value(updates[key])}")
        pending.pop(key, None)

    for key, value in pending.items():
        result.append(f"{key}={format_env_value(value)}")

    write_atomic(path, "\n".join(result) + "\n")


def ensure_env_file(install_dir: Union[str, Path]) -> Path:
    """Create .env from .env.example (or empty) when it does not exist yet."""
    install_dir = Path(install_dir)
    env_path = install_dir / ".env"
    if env_path.exists():
        return env_path
    example = install_dir / ".env.example"
    if example.exists():
        shutil.copyfile(str(example), str(env_path))
    else:
        logger.warning(f"No .env.example in {install_dir}; starting from an empty .env")
        env_path.touch()
    os.chmod(str(env_path), 0o640)
    return env_path
