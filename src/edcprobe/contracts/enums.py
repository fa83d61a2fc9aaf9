"""Status codes and phases shared across harness subsystems."""

from enum import StrEnum


class SignalLevel(StrEnum):
    """Severity of a console signal emitted by the diagnostics sink."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    INFO = "info"


class StepStatus(StrEnum):
    """Terminal status of one orchestrated step."""

    PASSED = "passed"
    FAILED = "failed"
    CRASHED = "crashed"
    SKIPPED = "skipped"


class IntegrityStatus(StrEnum):
    """Terminal verdict of a snapshot verification run."""

    VALID = "valid"
    FAILED = "failed"


class VerificationPhase(StrEnum):
    """States of the snapshot verification machine.

    DISCOVER -> COMPARE -> (VALID | REFRESH -> REPAIR_MISSING -> REVERIFY) -> REPORT
    """

    DISCOVER = "discover"
    COMPARE = "compare"
    VALID = "valid"
    REFRESH = "refresh"
    REPAIR_MISSING = "repair_missing"
    REVERIFY = "reverify"
    REPORT = "report"


class RefreshState(StrEnum):
    """Token refresh state of the authenticated client."""

    IDLE = "idle"
    REFRESHING = "refreshing"


class OutputFormat(StrEnum):
    """Step lifecycle output format of the CLI."""

    CONSOLE = "console"
    JSON = "json"
