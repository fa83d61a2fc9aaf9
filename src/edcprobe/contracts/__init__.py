"""Shared contracts: enums, errors, events, results and resource models."""

from edcprobe.contracts.enums import (
    IntegrityStatus,
    OutputFormat,
    RefreshState,
    SignalLevel,
    StepStatus,
    VerificationPhase,
)
from edcprobe.contracts.errors import (
    DiagnosticsEntry,
    HarnessError,
    MissingPrerequisiteError,
    RepairFailedError,
    StateFileError,
    StepNotFoundError,
)
from edcprobe.contracts.events import StepCompleted, StepStarted, SuiteSummary
from edcprobe.contracts.results import ApiResult

__all__ = [
    "ApiResult",
    "DiagnosticsEntry",
    "HarnessError",
    "IntegrityStatus",
    "MissingPrerequisiteError",
    "OutputFormat",
    "RefreshState",
    "RepairFailedError",
    "SignalLevel",
    "StateFileError",
    "StepCompleted",
    "StepNotFoundError",
    "StepStarted",
    "StepStatus",
    "SuiteSummary",
    "VerificationPhase",
]
