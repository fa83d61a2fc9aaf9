# src/edcprobe/engine/orchestrator.py
"""Runs suite steps in declared order and aggregates their outcomes.

In full-suite mode a failing step does not stop the run: every step executes,
each outcome is recorded, and the suite result is the conjunction. A single
step can also be run on its own; only its prerequisites are checked.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from edcprobe.contracts.enums import StepStatus
from edcprobe.contracts.errors import MissingPrerequisiteError, StateFileError, StepNotFoundError
from edcprobe.contracts.events import StepCompleted, StepStarted, SuiteSummary
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.step import Step

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class StepOutcome:
    name: str
    title: str
    status: StepStatus
    duration_seconds: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.PASSED


@dataclass
class SuiteResult:
    """Outcomes of a full-suite run, in execution order."""

    outcomes: list[StepOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.passed

    @property
    def ok(self) -> bool:
        return bool(self.outcomes) and self.failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class Orchestrator:
    """Ordered step runner.

    Args:
        ctx: Harness context shared by all steps
        steps: Steps in execution order; names must be unique
    """

    def __init__(self, ctx: HarnessContext, steps: Sequence[Step]) -> None:
        names = [s.name for s in steps]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate step names: {sorted(duplicates)}")
        self._ctx = ctx
        self._steps = list(steps)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    def _execute(self, step: Step, index: int, total: int) -> StepOutcome:
        ctx = self._ctx
        ctx.bus.emit(StepStarted(name=step.name, title=step.title, index=index, total=total))
        ctx.sink.header(f"{step.name}: {step.title}")
        log = logger.bind(step=step.name)
        log.info("step_started")

        start = time.perf_counter()
        error: str | None = None
        try:
            # Client and verifier log records inside the step carry its name
            with structlog.contextvars.bound_contextvars(step=step.name):
                status = StepStatus.PASSED if step.run(ctx) else StepStatus.FAILED
        except MissingPrerequisiteError as exc:
            ctx.sink.info(str(exc))
            status = StepStatus.FAILED
            error = str(exc)
        except StateFileError:
            # Fatal: later steps cannot resume without persisted state
            raise
        except Exception as exc:
            log.exception("step_crashed")
            error = f"{type(exc).__name__}: {exc}"
            ctx.sink.record_failure(step.name, "Unhandled exception", "n/a", "crash", error)
            status = StepStatus.CRASHED
        duration = time.perf_counter() - start

        log.info("step_completed", status=status.value, duration_seconds=round(duration, 3))
        ctx.bus.emit(
            StepCompleted(
                name=step.name,
                title=step.title,
                status=status,
                duration_seconds=duration,
                error_message=error,
            )
        )
        return StepOutcome(name=step.name, title=step.title, status=status, duration_seconds=duration, error=error)

    def run_all(self, *, stop_on_failure: bool = False, clear_diagnostics: bool = True) -> SuiteResult:
        """Run every step in order.

        Args:
            stop_on_failure: Record remaining steps as skipped after the first failure
            clear_diagnostics: Truncate the failure log before starting
        """
        if clear_diagnostics:
            self._ctx.sink.clear()

        result = SuiteResult()
        start = time.perf_counter()
        total = len(self._steps)
        halted = False
        for index, step in enumerate(self._steps, start=1):
            if halted:
                result.outcomes.append(StepOutcome(step.name, step.title, StepStatus.SKIPPED, 0.0))
                continue
            outcome = self._execute(step, index, total)
            result.outcomes.append(outcome)
            if stop_on_failure and not outcome.ok:
                halted = True
        result.duration_seconds = time.perf_counter() - start

        self._ctx.bus.emit(
            SuiteSummary(
                results=tuple((o.name, o.status) for o in result.outcomes),
                passed=result.passed,
                failed=result.failed,
                duration_seconds=result.duration_seconds,
                failure_log_entries=self._ctx.sink.failure_count(),
            )
        )
        return result

    def run_one(self, name: str) -> StepOutcome:
        """Run a single step standalone.

        Raises:
            StepNotFoundError: If no step has this name
        """
        for step in self._steps:
            if step.name == name:
                return self._execute(step, 1, 1)
        raise StepNotFoundError(name, [s.name for s in self._steps])
