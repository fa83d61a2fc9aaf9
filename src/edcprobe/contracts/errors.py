"""Error schemas and exceptions for the harness.

The HTTP client never raises for transport or HTTP failures; it normalises
them into ApiResult. The exceptions here are control-flow signals raised by
steps and the verifier and caught by the orchestrator or CLI.
"""

from typing import Any, NotRequired, TypedDict


class DiagnosticsEntry(TypedDict):
    """Schema for one line of the JSONL failure log."""

    timestamp: str  # ISO-8601 UTC
    script: str  # Step name that produced the failure
    step: str  # Human-readable sub-step label
    endpoint: str  # "METHOD /path" or a logical endpoint name
    status: int | str  # HTTP status, 0 for transport errors, or "crash"
    error: str
    requestBody: NotRequired[Any]
    responseBody: NotRequired[Any]


class HarnessError(Exception):
    """Base class for harness control-flow errors."""


class MissingPrerequisiteError(HarnessError):
    """Raised when a step runs without the state an earlier step produces.

    Attributes:
        field: State field that is absent or empty
        producer: Name of the step that produces the field
    """

    def __init__(self, field: str, producer: str) -> None:
        self.field = field
        self.producer = producer
        super().__init__(f"Missing '{field}' in state. Run '{producer}' first.")


class RepairFailedError(HarnessError):
    """Raised when the refresh or repair endpoint returns a failure.

    Attributes:
        phase: Verification phase that failed (refresh or repair_missing)
        status: HTTP status of the failed call (0 for transport errors)
        message: Normalised error message from the server
    """

    def __init__(self, phase: str, status: int, message: str) -> None:
        self.phase = phase
        self.status = status
        self.message = message
        super().__init__(f"{phase} failed with status {status}: {message}")


class StepNotFoundError(HarnessError):
    """Raised when a standalone run names a step that does not exist."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"Unknown step '{name}'. Available: {', '.join(available)}")


class StateFileError(HarnessError):
    """Raised when the state file cannot be written."""

    def __init__(self, path: str, cause: OSError) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot write state file {path}: {cause}")
