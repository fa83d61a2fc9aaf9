# src/edcprobe/core/state.py
"""Persistent state shared between suite steps.

Every identifier the suite creates (organization, templates, study, patient,
visits, snapshots) is written to a single JSON document as soon as it is
known, so a later step, or a later process, can pick up where an earlier
one stopped.

The document is an external interface: keys are camelCase and the file is
pretty-printed. Writes go to a temporary file in the same directory and are
swapped in with ``os.replace`` so a crash mid-write never leaves a truncated
document behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from edcprobe.contracts.errors import StateFileError

logger = structlog.get_logger(__name__)


class TestState(BaseModel):
    """Accumulated identifiers, all optional until the producing step runs."""

    __test__ = False  # not a pytest test class

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "allow",
    }

    # Organization and admin
    org_id: int | None = None
    org_name: str | None = None
    admin_user_id: int | None = None
    admin_username: str | None = None
    admin_email: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None

    # Members
    member1_user_id: int | None = None
    member1_username: str | None = None
    member2_user_id: int | None = None
    member2_username: str | None = None

    # Templates (CRFs)
    base_crf1_id: int | None = None
    base_crf1_version_id: int | None = None
    base_crf2_id: int | None = None
    base_crf2_version_id: int | None = None
    validation_crf1_id: int | None = None
    validation_crf1_version_id: int | None = None
    validation_crf2_id: int | None = None
    validation_crf2_version_id: int | None = None
    workflow_crf1_id: int | None = None
    workflow_crf1_version_id: int | None = None
    workflow_crf2_id: int | None = None
    workflow_crf2_version_id: int | None = None

    # Study
    study_id: int | None = None
    study_oid: str | None = None
    site_ids: list[int] | None = None
    event_definition_ids: list[int] | None = None
    validation_rule_ids: list[int] | None = None

    # Patient
    subject_id: int | None = None
    study_subject_id: str | None = None
    study_event_ids: list[int] | None = None
    event_crf_ids: list[int] | None = None
    snapshot_ids: list[int] | None = None
    unscheduled_event_ids: list[int] | None = None

    def to_document(self) -> dict[str, Any]:
        """Serialise to the on-disk form: camelCase keys, unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _field_alias(name: str) -> str:
    """Map a python field name to its document key; pass document keys through."""
    if name in TestState.model_fields:
        return to_camel(name)
    return name


class StateStore:
    """Load, merge and atomically persist the TestState document.

    Example:
        store = StateStore(Path("state/state.json"))
        store.update(org_id=7, org_name="Test Org 1")
        store.load().org_id  # 7
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> TestState:
        """Read the document, returning an empty state if it is absent or unreadable.

        A corrupt document is treated as empty rather than fatal; the suite
        re-creates whatever it needs.
        """
        if not self._path.exists():
            return TestState()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("state_unreadable", path=str(self._path), error=str(exc))
            return TestState()
        if not isinstance(raw, dict):
            logger.warning("state_not_an_object", path=str(self._path), kind=type(raw).__name__)
            return TestState()
        try:
            return TestState.model_validate(raw)
        except ValidationError as exc:
            logger.warning("state_invalid", path=str(self._path), errors=exc.error_count())
            return TestState()

    def save(self, state: TestState) -> None:
        """Write the whole document atomically.

        Raises:
            StateFileError: If the directory or file cannot be written
        """
        payload = json.dumps(state.to_document(), indent=2) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".state-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StateFileError(str(self._path), exc) from exc

    def update(self, partial: Mapping[str, Any] | None = None, **fields: Any) -> TestState:
        """Shallow-merge new values into the stored document and persist it.

        Keys may be python field names or document keys. ``None`` values are
        skipped, so a step can pass through an optional lookup result without
        erasing what an earlier step stored.
        """
        incoming = {**(partial or {}), **fields}
        document = self.load().to_document()
        for key, value in incoming.items():
            if value is None:
                continue
            document[_field_alias(key)] = value
        state = TestState.model_validate(document)
        self.save(state)
        logger.debug("state_updated", keys=sorted(k for k, v in incoming.items() if v is not None))
        return state

    def reset(self, keep: Iterable[str] = ()) -> None:
        """Discard stored state, optionally keeping the named fields."""
        kept_keys = {_field_alias(k) for k in keep}
        if kept_keys:
            document = self.load().to_document()
            self.save(TestState.model_validate({k: v for k, v in document.items() if k in kept_keys}))
            return
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise StateFileError(str(self._path), exc) from exc
