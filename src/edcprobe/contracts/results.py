"""Result types returned by the authenticated client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ApiResult:
    """Normalised outcome of one HTTP call.

    The client never raises for transport or HTTP failures, so every call
    produces one of these. ``status`` is 0 when no response was received.

    Attributes:
        ok: True for any 2xx status
        status: HTTP status code, or 0 for network errors and timeouts
        data: Response payload after envelope unwrapping and key normalisation
        meta: Envelope siblings of a list-valued ``data`` key (pagination etc.)
        error: Normalised error message for non-2xx results
        raw: Body exactly as received, kept for diagnostics
    """

    ok: bool
    status: int
    data: Any = None
    meta: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    raw: Any = None

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a key in a mapping payload, tolerating non-mapping payloads."""
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return default
