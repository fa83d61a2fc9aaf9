"""Step lifecycle events emitted by the orchestrator.

Consumed by CLI formatters through the EventBus.
"""

from __future__ import annotations

from dataclasses import dataclass

from edcprobe.contracts.enums import StepStatus


@dataclass(frozen=True, slots=True)
class StepStarted:
    """A step is about to run."""

    name: str
    title: str
    index: int
    total: int


@dataclass(frozen=True, slots=True)
class StepCompleted:
    """A step finished, successfully or not."""

    name: str
    title: str
    status: StepStatus
    duration_seconds: float
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class SuiteSummary:
    """Aggregated result of a full-suite run.

    Attributes:
        results: (step name, status) pairs in execution order
        failure_log_entries: Lines in the diagnostics log after the run
    """

    results: tuple[tuple[str, StepStatus], ...]
    passed: int
    failed: int
    duration_seconds: float
    failure_log_entries: int

    @property
    def ok(self) -> bool:
        return self.failed == 0
