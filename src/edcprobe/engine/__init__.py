"""Step orchestration."""

from edcprobe.engine.context import HarnessContext
from edcprobe.engine.orchestrator import Orchestrator, StepOutcome, SuiteResult
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step

__all__ = [
    "HarnessContext",
    "Orchestrator",
    "Step",
    "StepOutcome",
    "SuiteResult",
    "require",
]
