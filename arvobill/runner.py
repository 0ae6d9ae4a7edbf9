"""Ordered, idempotent step execution.

A step is a named action with an optional "already satisfied?" check. The
runner walks the list once, in order: satisfied steps are skipped without
side effects, unsatisfied ones run their action, and the first failure of a
fatal step stops the run. There are no retries; re-running the whole tool is
the recovery path, and the checks make completed steps free on the rerun.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from arvobill.context import RunContext
from arvobill.errors import StepFailed
from arvobill.ui import print_section, print_success, print_warning

logger = logging.getLogger(__name__)

DONE = "done"
SKIPPED = "skipped"
NOT_SELECTED = "not selected"
WARNING = "warning"
FAILED = "failed"


@dataclass
class Step:
    name: str
    action: Callable[[RunContext], None]
    check: Optional[Callable[[RunContext], bool]] = None
    when: Optional[Callable[[RunContext], bool]] = None
    fatal: bool = True

    def selected(self, ctx: RunContext) -> bool:
        return self.when is None or self.when(ctx)

    def satisfied(self, ctx: RunContext) -> bool:
        return self.check is not None and self.check(ctx)


@dataclass
class StepOutcome:
    name: str
    status: str
    message: str = ""


def run_steps(steps: Sequence[Step], ctx: RunContext) -> List[StepOutcome]:
    """Run steps in order, raising StepFailed on the first fatal failure.

    The outcomes recorded so far travel on the exception so callers can
    still print a status report.
    """
    outcomes: List[StepOutcome] = []
    for step in steps:
        if not step.selected(ctx):
            logger.debug(f"Step not selected: {step.name}")
            outcomes.append(StepOutcome(step.name, NOT_SELECTED))
            continue

        print_section(step.name)
        try:
            if step.satisfied(ctx):
                logger.info(f"Skipping '{step.name}': already satisfied")
                outcomes.append(StepOutcome(step.name, SKIPPED, "already satisfied"))
                continue
            step.action(ctx)
        except Exception as e:
            if not step.fatal:
                logger.warning(f"Step '{step.name}' failed, continuing: {e}")
                print_warning(f"{step.name} failed: {e}")
                outcomes.append(StepOutcome(step.name, WARNING, str(e)))
                continue
            logger.debug(f"Step '{step.name}' failed", exc_info=True)
            outcomes.append(StepOutcome(step.name, FAILED, str(e)))
            raise StepFailed(step.name, e, outcomes) from e

        print_success(f"{step.name} complete.")
        outcomes.append(StepOutcome(step.name, DONE))
    return outcomes
