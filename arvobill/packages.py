import logging
from typing import List, Optional, Sequence, Tuple

from arvobill import shell
from arvobill.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def is_installed(package: str) -> bool:
    result = shell.run_command(
        ["dpkg-query", "-W", "-f=${Status}", package], check=False
    )
    return result.returncode == 0 and "install ok installed" in (result.stdout or "")


def partition_packages(packages: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Split packages into (present, missing), keeping the declared order."""
    present: List[str] = []
    missing: List[str] = []
    for pkg in packages:
        if is_installed(pkg):
            logger.debug(f"Package already installed: {pkg}")
            present.append(pkg)
        else:
            missing.append(pkg)
    return present, missing


def all_installed(packages: Sequence[str]) -> bool:
    _, missing = partition_packages(packages)
    return not missing


def apt_update() -> None:
    shell.run_command(["apt-get", "update", "-y"], env=shell.merged_env(**APT_ENV))


def ensure_packages(packages: Sequence[str]) -> List[str]:
    """Install whatever is missing from packages in a single apt-get call.

    Returns the packages that were installed; an empty list means nothing
    had to be done and apt was not touched.
    """
    present, missing = partition_packages(packages)
    if not missing:
        print_success(f"All {len(present)} required packages are installed.")
        return []

    print_step(f"Installing {len(missing)} packages: {', '.join(missing)}")
    apt_update()
    shell.run_command(
        ["apt-get", "install", "-y", "--no-install-recommends", *missing],
        env=shell.merged_env(**APT_ENV),
    )
    return missing


def package_known(package: str) -> bool:
    result = shell.run_command(["apt-cache", "show", package], check=False)
    return result.returncode == 0 and bool((result.stdout or "").strip())


def first_available_package(candidates: Sequence[str]) -> Optional[str]:
    for pkg in candidates:
        if package_known(pkg):
            return pkg
    return None


def ensure_one_of(candidates: Sequence[str], purpose: str) -> Optional[str]:
    """Install the first known candidate unless one is already installed.

    Finding no candidate only warrants a warning; the caller decides
    whether the capability is optional.
    """
    for pkg in candidates:
        if is_installed(pkg):
            return pkg
    pkg = first_available_package(candidates)
    if pkg is None:
        print_warning(
            f"No {purpose} package found (tried {', '.join(candidates)}); continuing."
        )
        return None
    ensure_packages([pkg])
    return pkg


# ----------------------------------------------------------------
# PHP Repository
# ----------------------------------------------------------------
def php_repository_ready(php_version: str) -> bool:
    return package_known(f"php{php_version}-fpm")


def add_php_repository() -> None:
    print_step("Adding PHP repository ppa:ondrej/php...")
    ensure_packages(["software-properties-common"])
    shell.run_command(
        ["add-apt-repository", "-y", "ppa:ondrej/php"],
        env=shell.merged_env(**APT_ENV),
    )
    apt_update()
