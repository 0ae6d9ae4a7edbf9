from typing import Iterable, List, Optional


class ArvoBillError(Exception):
    """Base class for every failure the setup tool reports to the user."""


class PreconditionError(ArvoBillError):
    """Wrong OS, missing privilege, bad input or a declined confirmation."""


class CommandError(ArvoBillError):
    def __init__(self, cmd: List[str], returncode: int, stderr: Optional[str] = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"Command failed with exit code {returncode}: {' '.join(self.cmd)}"
        if self.stderr:
            # the last lines are usually the useful ones
            tail = "\n".join(self.stderr.splitlines()[-5:])
            message = f"{message}\n{tail}"
        super().__init__(message)


class SourceNotFoundError(ArvoBillError):
    """The extracted release has no top-level directory."""


class AmbiguousSourceError(ArvoBillError):
    """The extracted release has more than one candidate top-level directory."""


class ServiceUnavailableError(ArvoBillError):
    def __init__(self, candidates: Iterable[str]):
        self.candidates = list(candidates)
        super().__init__(
            "No service could be started; tried: " + ", ".join(self.candidates)
        )


class StepFailed(ArvoBillError):
    def __init__(
        self, step_name: str, cause: BaseException, outcomes: Optional[list] = None
    ):
        self.step_name = step_name
        self.cause = cause
        # outcomes recorded up to and including the failed step
        self.outcomes = list(outcomes or [])
        super().__init__(f"Step '{step_name}' failed: {cause}")
