import logging
from typing import Sequence

from arvobill import shell
from arvobill.errors import CommandError, ServiceUnavailableError
from arvobill.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)


def is_active(name: str) -> bool:
    result = shell.run_command(["systemctl", "is-active", "--quiet", name], check=False)
    return result.returncode == 0


def any_active(candidates: Sequence[str]) -> bool:
    return any(is_active(name) for name in candidates)


def start_first_available(candidates: Sequence[str]) -> str:
    """Enable and start candidates in order; return the first one that runs.

    Distributions ship the same capability under different unit names, so
    every name is tried before giving up.
    """
    attempted = []
    for name in candidates:
        attempted.append(name)
        print_step(f"Starting service {name}...")
        try:
            shell.run_command(["systemctl", "enable", "--now", name])
        except CommandError as e:
            logger.debug(f"Service {name} did not start: {e}")
            continue
        if is_active(name):
            print_success(f"Service {name} is active.")
            return name
        print_warning(f"Service {name} started but is not active.")
    raise ServiceUnavailableError(attempted)


def reload_service(name: str) -> None:
    shell.run_command(["systemctl", "reload", name])
