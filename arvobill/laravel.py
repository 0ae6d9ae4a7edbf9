"""Runtime tasks inside the ArvoBill install dir: artisan, composer, npm."""
import grp
import logging
import os
import pwd
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import requests

from arvobill import packages, shell, staging
from arvobill.config import EXTRA_CA_BUNDLE_URL, NODE_MAJOR, WEB_GROUP, WEB_USER
from arvobill.context import RunContext
from arvobill.envfile import read_env
from arvobill.errors import PreconditionError
from arvobill.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

WRITABLE_DIRS = ("storage", "bootstrap/cache")
STORAGE_SUBDIRS = (
    "storage/app/public",
    "storage/framework/cache",
    "storage/framework/sessions",
    "storage/framework/views",
    "storage/logs",
    "bootstrap/cache",
)


def artisan(ctx: RunContext, *args: str, check: bool = True):
    return shell.run_command(
        ["php", str(ctx.artisan_path), *args], check=check, cwd=ctx.install_dir
    )


# ----------------------------------------------------------------
# Maintenance Mode
# ----------------------------------------------------------------
def is_down(ctx: RunContext) -> bool:
    return (ctx.install_dir / "storage" / "framework" / "down").exists()


def enter_maintenance(ctx: RunContext) -> None:
    artisan(ctx, "down")
    ctx.maintenance_engaged = True
    print_success("Application is in maintenance mode.")


def leave_maintenance(ctx: RunContext) -> None:
    artisan(ctx, "up")
    ctx.maintenance_engaged = False
    print_success("Application is back online.")


def restore_app_mode(ctx: RunContext) -> None:
    """Best-effort `artisan up` during unwind; failures are logged, never raised."""
    if not ctx.maintenance_engaged or not ctx.artisan_path.exists():
        return
    try:
        result = artisan(ctx, "up", check=False)
    except Exception as e:
        logger.warning(f"Could not take the application out of maintenance mode: {e}")
        return
    if result.returncode != 0:
        logger.warning(
            "Could not take the application out of maintenance mode; "
            f"run: php {ctx.artisan_path} up"
        )
        return
    ctx.maintenance_engaged = False
    logger.info("Application restored from maintenance mode.")


@contextmanager
def maintenance_guard(ctx: RunContext) -> Iterator[RunContext]:
    try:
        yield ctx
    finally:
        restore_app_mode(ctx)


# ----------------------------------------------------------------
# Toolchain Environments
# ----------------------------------------------------------------
def find_ca_bundle(candidates: Sequence[Path]) -> Optional[Path]:
    for path in candidates:
        if path.is_file():
            return path
    return None


def _fetch_extra_ca(ctx: RunContext) -> None:
    """Best-effort download of the curl CA bundle into the local trust store."""
    print_step("Downloading CA bundle...")
    try:
        ctx.paths.extra_ca_cert.parent.mkdir(parents=True, exist_ok=True)
        staging.download_file(EXTRA_CA_BUNDLE_URL, ctx.paths.extra_ca_cert)
    except (requests.RequestException, OSError) as e:
        print_warning(f"Could not download the CA bundle: {e}")
        return
    shell.run_command(["update-ca-certificates"], check=False)


def composer_environment(ctx: RunContext) -> Dict[str, str]:
    """Environment for composer with a CA bundle it can actually read.

    Missing bundles are repaired by installing ca-certificates, then by
    adding the curl CA bundle to the local trust store.
    """
    bundle = find_ca_bundle(ctx.paths.ca_bundles)
    if bundle is None:
        print_step("Installing CA certificates...")
        packages.ensure_packages(["ca-certificates", "openssl"])
        shell.run_command(["update-ca-certificates"], check=False)
        bundle = find_ca_bundle(ctx.paths.ca_bundles)
    if bundle is None:
        _fetch_extra_ca(ctx)
        bundle = find_ca_bundle(ctx.paths.ca_bundles)
    if bundle is None:
        tried = ", ".join(str(p) for p in ctx.paths.ca_bundles)
        raise PreconditionError(f"CA bundle not found (tried {tried}).")
    if not os.access(bundle, os.R_OK):
        raise PreconditionError(f"CA bundle is not readable at {bundle}.")

    return shell.merged_env(
        COMPOSER_ALLOW_SUPERUSER="1",
        COMPOSER_CAFILE=str(bundle),
        SSL_CERT_FILE=str(bundle),
        CURL_CA_BUNDLE=str(bundle),
    )


def _version_key(name: str) -> List[int]:
    return [int(part) if part.isdigit() else 0 for part in name.lstrip("v").split(".")]


def node_environment(ctx: RunContext) -> Dict[str, str]:
    """Prefer a Node release installed through nvm, major NODE_MAJOR first."""
    versions_dir = ctx.paths.nvm_dir / "versions" / "node"
    if not versions_dir.is_dir():
        return shell.merged_env()
    installed = sorted(
        (p for p in versions_dir.iterdir() if (p / "bin" / "node").exists()),
        key=lambda p: _version_key(p.name),
    )
    preferred = [p for p in installed if p.name.startswith(f"v{NODE_MAJOR}.")]
    chosen = (preferred or installed or [None])[-1]
    if chosen is None:
        return shell.merged_env()
    logger.debug(f"Using nvm node from {chosen}")
    return shell.merged_env(PATH=f"{chosen / 'bin'}{os.pathsep}{os.environ.get('PATH', '')}")


# ----------------------------------------------------------------
# Dependencies and Build
# ----------------------------------------------------------------
def vendor_installed(ctx: RunContext) -> bool:
    return (ctx.install_dir / "vendor" / "autoload.php").exists()


def composer_install(ctx: RunContext) -> None:
    print_step("Installing PHP dependencies...")
    env = composer_environment(ctx)
    result = shell.run_command(
        ["composer", "config", "--global", "cafile", env["COMPOSER_CAFILE"]],
        check=False,
        env=env,
    )
    if result.returncode != 0:
        print_warning("Could not set composer's global cafile; relying on COMPOSER_CAFILE.")
    shell.run_command(
        [
            "composer",
            "install",
            "--no-dev",
            "--optimize-autoloader",
            "--no-interaction",
            f"--working-dir={ctx.install_dir}",
        ],
        env=env,
    )


def node_modules_installed(ctx: RunContext) -> bool:
    return (ctx.install_dir / "node_modules").is_dir()


def npm_install(ctx: RunContext) -> None:
    print_step("Installing Node dependencies...")
    shell.run_command(
        ["npm", "install", "--prefix", str(ctx.install_dir)], env=node_environment(ctx)
    )


def assets_built(ctx: RunContext) -> bool:
    build = ctx.public_dir / "build"
    return (build / "manifest.json").exists() or (build / ".vite" / "manifest.json").exists()


def npm_build(ctx: RunContext) -> None:
    print_step("Building frontend assets...")
    shell.run_command(
        ["npm", "run", "build", "--prefix", str(ctx.install_dir)],
        env=node_environment(ctx),
    )


# ----------------------------------------------------------------
# Application State
# ----------------------------------------------------------------
def app_key_set(ctx: RunContext) -> bool:
    return bool(read_env(ctx.env_file).get("APP_KEY"))


def generate_app_key(ctx: RunContext) -> None:
    artisan(ctx, "key:generate", "--force")


def migrations_pending(ctx: RunContext) -> bool:
    result = artisan(ctx, "migrate:status", check=False)
    # a fresh database has no migrations table and makes migrate:status fail
    if result.returncode != 0:
        return True
    return "Pending" in (result.stdout or "")


def run_migrations(ctx: RunContext) -> None:
    artisan(ctx, "migrate", "--force")


def storage_linked(ctx: RunContext) -> bool:
    return (ctx.public_dir / "storage").is_symlink()


def link_storage(ctx: RunContext) -> None:
    artisan(ctx, "storage:link")


def config_cached(ctx: RunContext) -> bool:
    return (ctx.install_dir / "bootstrap" / "cache" / "config.php").exists()


def cache_config(ctx: RunContext) -> None:
    artisan(ctx, "optimize")


def clear_caches(ctx: RunContext) -> None:
    artisan(ctx, "optimize:clear")


# ----------------------------------------------------------------
# Permissions
# ----------------------------------------------------------------
def _web_ids() -> Optional[tuple]:
    try:
        return pwd.getpwnam(WEB_USER).pw_uid, grp.getgrnam(WEB_GROUP).gr_gid
    except KeyError:
        return None


def _owned_with_mode(path: Path, ids: tuple, mode: int) -> bool:
    st = path.lstat()
    return (st.st_uid, st.st_gid) == ids and (st.st_mode & mode) == mode


def permissions_ok(ctx: RunContext) -> bool:
    """True when every entry below the writable dirs has the web owner and mode."""
    ids = _web_ids()
    if ids is None:
        return False
    for rel in WRITABLE_DIRS:
        top = ctx.install_dir / rel
        if not top.is_dir() or not _owned_with_mode(top, ids, 0o775):
            return False
        for dirpath, dirnames, filenames in os.walk(top):
            base = Path(dirpath)
            for name in dirnames:
                if not _owned_with_mode(base / name, ids, 0o775):
                    return False
            for name in filenames:
                if not _owned_with_mode(base / name, ids, 0o664):
                    return False
    env = ctx.env_file
    if env.exists():
        st = env.stat()
        if st.st_gid != ids[1] or (st.st_mode & 0o777) != 0o640:
            return False
    return True


def fix_permissions(ctx: RunContext) -> None:
    print_step("Applying file permissions...")
    for rel in STORAGE_SUBDIRS:
        (ctx.install_dir / rel).mkdir(parents=True, exist_ok=True)
    targets = [str(ctx.install_dir / rel) for rel in WRITABLE_DIRS]

    ids = _web_ids()
    if ids is None:
        shell.run_command(["chmod", "-R", "ug+rwX", *targets])
        print_warning(f"{WEB_USER} user not found; applied permission-only fallback.")
        return

    shell.run_command(["chown", "-R", f"{WEB_USER}:{WEB_GROUP}", *targets])
    shell.run_command(["find", *targets, "-type", "d", "-exec", "chmod", "775", "{}", "+"])
    shell.run_command(["find", *targets, "-type", "f", "-exec", "chmod", "664", "{}", "+"])
    if ctx.env_file.exists():
        os.chown(ctx.env_file, 0, ids[1])
        os.chmod(ctx.env_file, 0o640)
