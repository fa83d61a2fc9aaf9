# src/edcprobe/verification/roundtrip.py
"""Compare form data written to a snapshot with what the backend returns.

Values are compared after string coercion because the backend stores every
item value as text: ``72`` comes back as ``"72"`` and ``True`` as ``"true"``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from deepdiff import DeepDiff


def string_coerce(value: Any) -> str:
    """Canonical text form of a form value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list | dict):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


@dataclass
class RoundTripResult:
    """Outcome of one written-vs-stored comparison.

    Attributes:
        keys: Keys that were compared
        missing_keys: Keys written but absent from the stored data
        mismatches: key -> (written, stored), both string-coerced
        differences: Raw DeepDiff output for diagnostics
    """

    keys: list[str]
    missing_keys: list[str] = field(default_factory=list)
    mismatches: dict[str, tuple[str, str]] = field(default_factory=dict)
    differences: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.missing_keys and not self.mismatches

    def describe(self) -> str:
        parts = []
        if self.missing_keys:
            parts.append(f"missing keys: {', '.join(self.missing_keys)}")
        for key, (expected, observed) in self.mismatches.items():
            parts.append(f"{key}: expected {expected!r}, got {observed!r}")
        return "; ".join(parts) if parts else "all keys match"


def check_round_trip(
    written: Mapping[str, Any],
    stored: Mapping[str, Any],
    keys: Iterable[str] | None = None,
) -> RoundTripResult:
    """Assert ``keys`` of ``written`` survive unchanged in ``stored``.

    Keys default to every written key. Keys listed but never written are
    ignored so one key list can serve several payload shapes.
    """
    selected = [k for k in (keys if keys is not None else written.keys()) if k in written]
    result = RoundTripResult(keys=selected)

    expected = {k: string_coerce(written[k]) for k in selected}
    observed = {k: string_coerce(stored[k]) for k in selected if k in stored}
    result.missing_keys = [k for k in selected if k not in stored]

    diff = DeepDiff(expected, observed)
    result.differences = diff.to_dict() if diff else {}
    for key in selected:
        if key in observed and observed[key] != expected[key]:
            result.mismatches[key] = (expected[key], observed[key])
    return result
