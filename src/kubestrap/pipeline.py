"""Ordered installation pipeline.

Steps run strictly one after another in declaration order. Failure policy
has two axes:

- a non-critical step's failure is recorded and the run continues;
- a critical step's failure halts the run, unless continue_on_error is set,
  in which case it is recorded like a non-critical one.

Skipped steps are never executed, whatever their criticality. Steps are
expected to be idempotent themselves; the pipeline does no deduplication.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .errors import StepFailure
from .shared.logging import get_logger, log_context

logger = get_logger(__name__)

StepAction = Callable[[], "Awaitable[None] | None"]


class RunState(Enum):
    """State of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED, RunState.PARTIALLY_FAILED)

    @property
    def exit_code(self) -> int:
        return 1 if self == RunState.FAILED else 0


class StepStatus(Enum):
    """Outcome of one step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class InstallStep:
    """One unit of installation work."""

    name: str
    action: StepAction
    critical: bool = True
    skip: bool = False


@dataclass
class StepOutcome:
    """Recorded result of a step."""

    name: str
    status: StepStatus
    critical: bool = True
    error: StepFailure | None = None
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


@dataclass
class PipelineReport:
    """Run-level report: terminal state plus per-step outcomes in order."""

    state: RunState = RunState.PENDING
    outcomes: list[StepOutcome] = field(default_factory=list)
    failed_step: str | None = None

    @property
    def failures(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.status == StepStatus.FAILED]

    @property
    def halting_failure(self) -> StepOutcome | None:
        """The failure that stopped the run, when state is FAILED."""
        if self.state != RunState.FAILED:
            return None
        return next((o for o in self.outcomes if o.name == self.failed_step), None)

    def outcome(self, name: str) -> StepOutcome | None:
        return next((o for o in self.outcomes if o.name == name), None)

    @property
    def executed(self) -> list[str]:
        return [o.name for o in self.outcomes if o.status != StepStatus.SKIPPED]


StepCallback = Callable[[InstallStep, "StepOutcome | None"], None]


class StepPipeline:
    """Run InstallSteps in order with per-step failure isolation."""

    def __init__(
        self,
        steps: Sequence[InstallStep],
        continue_on_error: bool = False,
        on_step: StepCallback | None = None,
    ):
        """Initialize pipeline.

        Args:
            steps: Steps in execution order
            continue_on_error: Treat critical failures like non-critical ones
            on_step: Optional progress callback, called with (step, None)
                before a step runs and (step, outcome) after it finishes
                or is skipped.
        """
        self.steps = tuple(steps)
        self.continue_on_error = continue_on_error
        self.on_step = on_step
        self.state = RunState.PENDING
        self.current_index: int | None = None

    async def run(self) -> PipelineReport:
        """Execute the pipeline.

        Returns:
            PipelineReport in a terminal state.
        """
        report = PipelineReport(state=RunState.RUNNING)
        self.state = RunState.RUNNING

        for index, step in enumerate(self.steps):
            self.current_index = index

            if step.skip:
                outcome = StepOutcome(step.name, StepStatus.SKIPPED, critical=step.critical)
                report.outcomes.append(outcome)
                logger.info("step_skipped", step=step.name)
                self._notify(step, outcome)
                continue

            logger.info("step_started", step=step.name, index=index + 1, total=len(self.steps))
            self._notify(step, None)

            outcome = await self._execute(step)
            report.outcomes.append(outcome)
            self._notify(step, outcome)

            if outcome.succeeded:
                logger.info("step_completed", step=step.name, elapsed=round(outcome.elapsed_seconds, 2))
                continue

            if step.critical and not self.continue_on_error:
                logger.error("step_failed_halting", step=step.name, error=str(outcome.error.cause))
                report.state = RunState.FAILED
                report.failed_step = step.name
                self.state = report.state
                return report

            logger.warning(
                "step_failed_continuing",
                step=step.name,
                critical=step.critical,
                error=str(outcome.error.cause),
            )

        report.state = RunState.PARTIALLY_FAILED if report.failures else RunState.SUCCEEDED
        self.state = report.state
        self.current_index = None
        return report

    async def _execute(self, step: InstallStep) -> StepOutcome:
        start = time.monotonic()
        try:
            with log_context(step=step.name):
                result = step.action()
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            return StepOutcome(
                step.name,
                StepStatus.FAILED,
                critical=step.critical,
                error=StepFailure.wrap(step.name, e),
                elapsed_seconds=time.monotonic() - start,
            )
        return StepOutcome(
            step.name,
            StepStatus.SUCCEEDED,
            critical=step.critical,
            elapsed_seconds=time.monotonic() - start,
        )

    def _notify(self, step: InstallStep, outcome: StepOutcome | None) -> None:
        if self.on_step:
            self.on_step(step, outcome)
