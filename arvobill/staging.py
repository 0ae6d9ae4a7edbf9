"""Download, extract and place an ArvoBill release.

Install mode copies the release over the install dir. Update mode mirrors it:
files missing from the release are deleted from the install dir, except for
paths under the exclusion filter (.env, storage, caches...), which the sync
never touches in either direction.
"""
import filecmp
import logging
import os
import shutil
import stat
import tempfile
import zipfile
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Union

import requests
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
)

from arvobill.config import ARCHIVE_ROOT_NAME, DOWNLOAD_TIMEOUT, SYNC_EXCLUDES
from arvobill.context import RunContext
from arvobill.errors import (
    AmbiguousSourceError,
    PreconditionError,
    SourceNotFoundError,
)
from arvobill.ui import console, print_step, print_success

logger = logging.getLogger(__name__)

INSTALL = "install"
UPDATE = "update"

_IGNORED_TOP_LEVEL = {"__MACOSX"}


# ----------------------------------------------------------------
# Temporary Workspace
# ----------------------------------------------------------------
class TempWorkspace:
    """Scratch directory for one run, removed on every exit path."""

    def __init__(self, prefix: str = "arvobill-"):
        self.prefix = prefix
        self.path: Optional[Path] = None

    def __enter__(self) -> "TempWorkspace":
        self.path = Path(tempfile.mkdtemp(prefix=self.prefix))
        logger.debug(f"Created workspace {self.path}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self.path is None:
            return
        try:
            shutil.rmtree(self.path)
            logger.debug(f"Removed workspace {self.path}")
        except OSError as e:
            logger.warning(f"Failed to clean up {self.path}: {e}")
        self.path = None


# ----------------------------------------------------------------
# Download and Extraction
# ----------------------------------------------------------------
def download_file(url: str, destination: Union[str, Path]) -> Path:
    """Stream url to destination with a progress bar. HTTP errors propagate."""
    destination = Path(destination)
    print_step(f"Downloading {url}")
    with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
        response.raise_for_status()
        total_length = int(response.headers.get("content-length", 0)) or None
        with open(destination, "wb") as archive, Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Downloading", total=total_length)
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    archive.write(chunk)
                    progress.update(task, advance=len(chunk))
    print_success("Download complete.")
    return destination


def _restore_unix_attributes(zf: zipfile.ZipFile, destination: Path) -> None:
    """Reapply the mode bits and symlinks that extractall drops."""
    for info in zf.infolist():
        mode = info.external_attr >> 16
        if info.create_system != 3 or not mode:
            continue
        name = PurePosixPath(info.filename)
        if name.is_absolute() or ".." in name.parts:
            continue
        path = destination / name
        if stat.S_ISLNK(mode):
            link_target = zf.read(info).decode("utf-8")
            if path.exists() or path.is_symlink():
                path.unlink()
            os.symlink(link_target, path)
        elif path.exists() and not path.is_symlink():
            os.chmod(path, stat.S_IMODE(mode))


def extract_archive(archive: Union[str, Path], destination: Union[str, Path]) -> Path:
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(destination)
            _restore_unix_attributes(zf, destination)
    except zipfile.BadZipFile as e:
        raise SourceNotFoundError(f"Downloaded file is not a valid zip archive: {e}")
    return destination


def locate_source_dir(root: Union[str, Path], expected: str = ARCHIVE_ROOT_NAME) -> Path:
    """Find the release directory inside an extracted archive.

    The expected name wins when present. Otherwise there must be exactly one
    top-level directory; none or several is an error rather than a guess.
    """
    root = Path(root)
    candidate = root / expected
    if candidate.is_dir():
        return candidate

    dirs = sorted(
        p for p in root.iterdir() if p.is_dir() and p.name not in _IGNORED_TOP_LEVEL
    )
    if not dirs:
        raise SourceNotFoundError(f"No top-level directory found in {root}")
    if len(dirs) > 1:
        names = ", ".join(p.name for p in dirs)
        raise AmbiguousSourceError(
            f"Expected {expected!r} or a single top-level directory in {root}, "
            f"found: {names}"
        )
    return dirs[0]


# ----------------------------------------------------------------
# Install Mode
# ----------------------------------------------------------------
def copy_release(
    source: Union[str, Path], destination: Union[str, Path], allow_non_empty: bool
) -> None:
    source, destination = Path(source), Path(destination)
    if destination.exists() and any(destination.iterdir()) and not allow_non_empty:
        raise PreconditionError(
            f"{destination} is not empty; confirm installing into it or pick another directory"
        )
    destination.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)


# ----------------------------------------------------------------
# Update Mode: Mirror With Exclusions
# ----------------------------------------------------------------
@dataclass
class SyncReport:
    copied: int = 0
    deleted: int = 0
    unchanged: int = 0


def is_excluded(relpath: Union[str, PurePosixPath], excludes: Iterable[str]) -> bool:
    """True when relpath or one of its parents matches an exclusion pattern.

    >>> is_excluded("storage/logs/laravel.log", ["storage/*"])
    True
    >>> is_excluded("storage", ["storage/*"])
    False
    >>> is_excluded("app/Models/User.php", [".env", "vendor"])
    False
    """
    rel = PurePosixPath(relpath)
    candidates = [rel, *list(rel.parents)[:-1]]
    return any(
        fnmatchcase(str(candidate), pattern)
        for candidate in candidates
        for pattern in excludes
    )


def _same_file(src: Path, dst: Path) -> bool:
    if src.is_symlink() or dst.is_symlink():
        return (
            src.is_symlink()
            and dst.is_symlink()
            and os.readlink(src) == os.readlink(dst)
        )
    return dst.is_file() and filecmp.cmp(src, dst, shallow=True)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _copy_entry(src: Path, dst: Path) -> None:
    if dst.is_symlink() or dst.exists():
        _remove(dst)
    if src.is_symlink():
        os.symlink(os.readlink(src), dst)
    else:
        shutil.copy2(src, dst)


def mirror_tree(
    source: Union[str, Path],
    destination: Union[str, Path],
    excludes: Sequence[str] = SYNC_EXCLUDES,
) -> SyncReport:
    """Make destination match source, leaving excluded paths alone.

    Excluded paths are neither copied from the source nor modified or
    deleted in the destination, whether or not the source has them.
    """
    source, destination = Path(source), Path(destination)
    report = SyncReport()
    destination.mkdir(parents=True, exist_ok=True)

    for dirpath, dirnames, filenames in os.walk(source):
        src_dir = Path(dirpath)
        rel_dir = PurePosixPath(src_dir.relative_to(source).as_posix())
        kept_dirs: List[str] = []
        for name in sorted(dirnames):
            rel = rel_dir / name
            if is_excluded(rel, excludes):
                continue
            src, dst = src_dir / name, destination / rel
            if src.is_symlink():
                # os.walk does not descend into links; mirror the link itself
                if not _same_file(src, dst):
                    _copy_entry(src, dst)
                    report.copied += 1
                else:
                    report.unchanged += 1
                continue
            if (dst.exists() or dst.is_symlink()) and (dst.is_symlink() or not dst.is_dir()):
                _remove(dst)
            dst.mkdir(exist_ok=True)
            kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            rel = rel_dir / name
            if is_excluded(rel, excludes):
                continue
            src, dst = src_dir / name, destination / rel
            if _same_file(src, dst):
                report.unchanged += 1
                continue
            _copy_entry(src, dst)
            report.copied += 1

    orphan_dirs: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(destination):
        dst_dir = Path(dirpath)
        rel_dir = PurePosixPath(dst_dir.relative_to(destination).as_posix())
        kept_dirs = []
        for name in dirnames:
            rel = rel_dir / name
            if is_excluded(rel, excludes):
                continue
            dst, src = dst_dir / name, source / rel
            if dst.is_symlink():
                filenames.append(name)
                continue
            if not src.is_dir() or src.is_symlink():
                orphan_dirs.append(dst)
            kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in filenames:
            rel = rel_dir / name
            if is_excluded(rel, excludes):
                continue
            src = source / rel
            if src.exists() or src.is_symlink():
                continue
            (dst_dir / name).unlink()
            report.deleted += 1

    # deepest first; a directory still holding excluded paths stays
    for dst in reversed(orphan_dirs):
        if not any(dst.iterdir()):
            dst.rmdir()
            report.deleted += 1

    return report


# ----------------------------------------------------------------
# Fetch and Stage
# ----------------------------------------------------------------
def fetch_release(url: str, ctx: RunContext, mode: str) -> None:
    """Download the release and place it in ctx.install_dir.

    The scratch workspace is removed whether this succeeds or raises.
    """
    with TempWorkspace() as workspace:
        archive = download_file(url, workspace.path / "arvobill.zip")
        print_step("Extracting release package...")
        extracted = extract_archive(archive, workspace.path / "extract")
        source = locate_source_dir(extracted)
        logger.debug(f"Release source directory: {source}")

        if mode == INSTALL:
            print_step(f"Copying release into {ctx.install_dir}...")
            copy_release(source, ctx.install_dir, ctx.allow_non_empty_dir)
        elif mode == UPDATE:
            print_step(f"Syncing release into {ctx.install_dir}...")
            report = mirror_tree(source, ctx.install_dir)
            logger.info(
                f"Synced files: {report.copied} copied, {report.deleted} deleted, "
                f"{report.unchanged} unchanged"
            )
        else:
            raise ValueError(f"Unknown staging mode: {mode!r}")
