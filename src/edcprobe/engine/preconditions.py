"""Prerequisite checks against persisted state."""

from __future__ import annotations

from typing import Any

from edcprobe.contracts.errors import MissingPrerequisiteError
from edcprobe.core.state import TestState

# State field -> step that produces it
PRODUCERS: dict[str, str] = {
    "org_id": "00-register-organization",
    "admin_username": "00-register-organization",
    "access_token": "02-login-admin",
    "base_crf1_id": "03-create-base-ecrfs",
    "base_crf2_id": "03-create-base-ecrfs",
    "validation_crf1_id": "04-fork-ecrfs-validation",
    "validation_crf2_id": "04-fork-ecrfs-validation",
    "workflow_crf1_id": "05-fork-ecrfs-workflow",
    "workflow_crf2_id": "05-fork-ecrfs-workflow",
    "study_id": "06-create-study",
    "event_definition_ids": "06-create-study",
    "site_ids": "06-create-study",
    "subject_id": "09-create-patient",
    "study_event_ids": "09-create-patient",
}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, list | str) and len(value) == 0)


def require(state: TestState, *fields: str, producer: str | None = None) -> None:
    """Fail fast when a field an earlier step produces is absent.

    Empty lists and strings count as absent.

    Raises:
        MissingPrerequisiteError: For the first missing field, naming the
            step that produces it
    """
    for field in fields:
        if _is_missing(getattr(state, field, None)):
            raise MissingPrerequisiteError(field, producer or PRODUCERS.get(field, "an earlier step"))
