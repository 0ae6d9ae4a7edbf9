import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


def render_template(name: str, /, **context: Any) -> str:
    """Render a bundled template; a missing variable raises instead of rendering blank."""
    return _env.get_template(name).render(**context)


def write_atomic(
    path: Union[str, Path], content: str, mode: Optional[int] = None
) -> None:
    """Replace path with content via a temp file in the same directory.

    Keeps the mode of an existing file unless one is given.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        if path.exists():
            shutil.copymode(str(path), tmp_name)
            st = path.stat()
            try:
                os.chown(tmp_name, st.st_uid, st.st_gid)
            except PermissionError:
                logger.debug(f"Cannot keep ownership of {path}; not running as root")
        else:
            os.chmod(tmp_name, 0o644)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, str(path))
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
