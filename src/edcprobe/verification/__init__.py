"""Snapshot consistency verification, content validation and data round-trips."""

from edcprobe.verification.content import FieldViolation, validate_snapshot
from edcprobe.verification.integrity import (
    EventGraph,
    IntegrityCheck,
    IntegrityReport,
    SnapshotVerifier,
    VerificationRun,
    compare_event_graphs,
)
from edcprobe.verification.roundtrip import RoundTripResult, check_round_trip, string_coerce

__all__ = [
    "EventGraph",
    "FieldViolation",
    "IntegrityCheck",
    "IntegrityReport",
    "RoundTripResult",
    "SnapshotVerifier",
    "VerificationRun",
    "check_round_trip",
    "compare_event_graphs",
    "string_coerce",
    "validate_snapshot",
]
