# src/edcprobe/client/normalize.py
"""Response normalisation for an inconsistent backend.

The backend mixes three habits: some endpoints wrap payloads in
``{"success": ..., "data": ...}``, some return bare objects or arrays, and
key casing flips between snake_case (raw SQL rows) and camelCase. Steps
should never care which, so every response body passes through
``normalize_body`` once, in the client, and callers see one shape.
"""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)

# Values under these keys hold user-defined field names; never rewrite them
_OPAQUE_KEYS = frozenset({"formData", "existingData", "validData", "form_data", "existing_data"})

_ENVELOPE_META_KEYS = ("success", "message")

_SNAKE_SEGMENT = re.compile(r"_([a-zA-Z0-9])")

_INTEGER_TEXT = re.compile(r"-?[0-9]+")


def camelize_key(key: str) -> str:
    """Convert ``patient_event_form_id`` to ``patientEventFormId``.

    Keys that are already camelCase, or that start with an underscore, pass
    through unchanged.
    """
    if "_" not in key or key.startswith("_"):
        return key
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), key)


def camelize(value: Any) -> Any:
    """Recursively camelise mapping keys, leaving opaque payloads untouched."""
    if isinstance(value, dict):
        result: dict[str, Any] = {}
        for key, item in value.items():
            new_key = camelize_key(key) if isinstance(key, str) else key
            result[new_key] = item if key in _OPAQUE_KEYS else camelize(item)
        return result
    if isinstance(value, list):
        return [camelize(item) for item in value]
    return value


def normalize_body(body: Any) -> tuple[Any, dict[str, Any]]:
    """Unwrap the response envelope and normalise key casing.

    Returns:
        (payload, meta). When ``data`` is an object its siblings are merged
        underneath it, with ``data`` winning on conflicts. When ``data`` is a
        list or scalar, the siblings are returned as ``meta``.
    """
    body = camelize(body)
    if not isinstance(body, dict) or "data" not in body:
        return body, {}

    inner = body["data"]
    siblings = {k: v for k, v in body.items() if k != "data"}
    meta = {k: siblings.pop(k) for k in _ENVELOPE_META_KEYS if k in siblings}
    if isinstance(inner, dict):
        return {**siblings, **inner}, meta
    return inner, {**meta, **siblings}


def as_list(payload: Any, *keys: str) -> list[Any]:
    """Return the payload if it is a list, else the first list under ``keys``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            candidate = payload.get(key)
            if isinstance(candidate, list):
                return candidate
    return []


def coerce_int(value: Any) -> int | None:
    """Integer from an int or a numeric string; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER_TEXT.fullmatch(value.strip()):
        return int(value.strip())
    return None


def first_int(payload: Any, *keys: str) -> int | None:
    """First value under ``keys`` that coerces to an integer."""
    if not isinstance(payload, dict):
        return None
    for key in keys:
        value = coerce_int(payload.get(key))
        if value is not None:
            return value
    return None


def error_message(body: Any) -> str:
    """Human-readable message for a failed response body.

    Prefers the ``message`` field; otherwise the compact JSON text of the body.
    """
    if isinstance(body, dict):
        message = body.get("message")
        if message:
            return str(message)
        return json.dumps(body, separators=(",", ":"), default=str)
    if body is None:
        return ""
    if isinstance(body, list):
        return json.dumps(body, separators=(",", ":"), default=str)
    return str(body)


def parse_rows(model: type[M], payload: Any, *keys: str) -> list[M]:
    """Validate every row of a list payload into ``model``.

    Raises:
        ValidationError: If any row does not fit the model
    """
    return [model.model_validate(row) for row in as_list(payload, *keys)]
