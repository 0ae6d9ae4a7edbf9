import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

from arvobill.config import OPERATION_TIMEOUT
from arvobill.errors import CommandError

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Command Execution Utilities
# ----------------------------------------------------------------
def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    input: Optional[str] = None,
    timeout: Optional[int] = OPERATION_TIMEOUT,
) -> subprocess.CompletedProcess:
    """
    Run a command and return the completed process.

    With check=True a non-zero exit raises CommandError; a missing executable
    is reported the same way with exit code 127.
    """
    logger.debug(f"Running command: {shlex.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            check=False,
            text=True,
            capture_output=capture_output,
            env=env,
            cwd=str(cwd) if cwd is not None else None,
            input=input,
            timeout=timeout,
        )
    except FileNotFoundError:
        if check:
            raise CommandError(cmd, 127, f"{cmd[0]}: command not found")
        return subprocess.CompletedProcess(cmd, 127, "", f"{cmd[0]}: command not found")
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout} seconds: {shlex.join(cmd)}")
        raise CommandError(cmd, -1, f"timed out after {timeout} seconds")

    if result.returncode != 0:
        logger.debug(f"Exit code {result.returncode}: {(result.stderr or '').strip()}")
        if check:
            raise CommandError(cmd, result.returncode, result.stderr)
    return result


def merged_env(**overrides: str) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(overrides)
    return env
