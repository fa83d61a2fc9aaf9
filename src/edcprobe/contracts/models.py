"""Tolerant parsers for EDC backend resources.

The backend is inconsistent about key names across endpoints and versions
(``patientEventFormId`` vs ``id``, ``missingSnapshots`` vs ``missingCount``).
Payloads reach these models after ``normalize_body`` has camelised them, and
each field lists every alias the backend is known to emit via AliasChoices.
Unknown keys are ignored.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

_MISSING_MISMATCH_TYPES = frozenset({"missing_snapshot", "missing_event_crf"})
_EXTRA_MISMATCH_TYPES = frozenset({"orphan_snapshot", "extra_snapshot", "duplicate_snapshot"})


class _Resource(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}


class LoginPayload(_Resource):
    """Payload of POST /auth/login and POST /organizations/register."""

    access_token: str | None = Field(default=None, validation_alias=AliasChoices("accessToken", "token"))
    refresh_token: str | None = Field(default=None, validation_alias=AliasChoices("refreshToken"))
    user_id: int | None = Field(default=None, validation_alias=AliasChoices("userId"))
    organization_id: int | None = Field(default=None, validation_alias=AliasChoices("organizationId", "orgId"))
    organization_name: str | None = Field(default=None, validation_alias=AliasChoices("organizationName"))
    expires_in: int | None = Field(default=None, validation_alias=AliasChoices("expiresIn"))

    @model_validator(mode="before")
    @classmethod
    def _flatten_nested(cls, data: Any) -> Any:
        """Lift ``user.userId`` and ``organizations[0]`` onto the top level."""
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        user = data.get("user")
        if isinstance(user, dict) and "userId" not in merged:
            merged["userId"] = user.get("userId") or user.get("id")
        orgs = data.get("organizations")
        if isinstance(orgs, list) and orgs and isinstance(orgs[0], dict):
            merged.setdefault("organizationId", orgs[0].get("organizationId"))
            merged.setdefault("organizationName", orgs[0].get("organizationName"))
        return merged


class ScheduledEvent(_Resource):
    """One scheduled visit (study event) of a subject."""

    event_id: int = Field(validation_alias=AliasChoices("studyEventId", "id", "eventId"))
    definition_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("studyEventDefinitionId", "eventDefinitionId", "definitionId"),
    )
    name: str | None = Field(default=None, validation_alias=AliasChoices("eventName", "definitionName", "name"))
    status: Any = Field(default=None, validation_alias=AliasChoices("subjectEventStatus", "status", "statusId"))


class VisitForm(_Resource):
    """One template assigned to a visit, as listed by the visit-forms endpoint."""

    crf_id: int = Field(validation_alias=AliasChoices("crfId", "id"))
    crf_name: str | None = Field(default=None, validation_alias=AliasChoices("crfName", "name", "formName"))
    required: bool = Field(default=False, validation_alias=AliasChoices("requiredCrf", "required", "isRequired"))
    event_crf_id: int | None = Field(default=None, validation_alias=AliasChoices("eventCrfId"))
    completion_status: str | None = Field(default=None, validation_alias=AliasChoices("completionStatus"))


class SnapshotField(_Resource):
    """One field inside a snapshot's frozen form structure."""

    model_config = {"extra": "allow", "populate_by_name": True}

    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "fieldName", "key"))
    field_type: str | None = Field(default=None, validation_alias=AliasChoices("type", "fieldType"))
    label: str | None = Field(default=None, validation_alias=AliasChoices("label", "fieldLabel"))
    table_columns: Any = Field(default=None, validation_alias=AliasChoices("tableColumns", "columns"))
    calculation_formula: str | None = Field(
        default=None, validation_alias=AliasChoices("calculationFormula", "formula")
    )


class FormSnapshot(_Resource):
    """A patient's frozen copy of one template, bound to one visit."""

    snapshot_id: int = Field(validation_alias=AliasChoices("patientEventFormId", "snapshotId", "id"))
    study_event_id: int | None = Field(default=None, validation_alias=AliasChoices("studyEventId"))
    crf_id: int | None = Field(default=None, validation_alias=AliasChoices("crfId"))
    form_name: str | None = Field(default=None, validation_alias=AliasChoices("formName", "crfName", "name"))
    fields: list[SnapshotField] = Field(default_factory=list)
    form_data: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("formData", "data"))
    is_locked: bool = Field(default=False, validation_alias=AliasChoices("isLocked"))
    is_frozen: bool = Field(default=False, validation_alias=AliasChoices("isFrozen"))
    completion_status: str | None = Field(default=None, validation_alias=AliasChoices("completionStatus"))

    @model_validator(mode="before")
    @classmethod
    def _extract_structure_fields(cls, data: Any) -> Any:
        """Pull ``fields`` out of ``formStructure`` (object, list or JSON text)."""
        if not isinstance(data, dict) or "fields" in data:
            return data
        structure = data.get("formStructure")
        if isinstance(structure, str):
            structure = json.loads(structure) if structure.strip() else {}
        if isinstance(structure, dict):
            fields = structure.get("fields") or []
        elif isinstance(structure, list):
            fields = structure
        else:
            fields = []
        return {**data, "fields": fields}

    @field_validator("form_data", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value


class ServerIntegrityReport(_Resource):
    """The backend's own verdict from GET /events/verify/subject/:id."""

    valid: bool | None = Field(default=None, validation_alias=AliasChoices("valid", "isValid"))
    missing: int | None = Field(
        default=None, validation_alias=AliasChoices("missingSnapshots", "missing", "missingCount")
    )
    extra: int | None = Field(default=None, validation_alias=AliasChoices("extraSnapshots", "extra", "extraCount"))
    events_checked: int | None = Field(default=None, validation_alias=AliasChoices("totalEvents", "eventsChecked"))
    forms_checked: int | None = Field(default=None, validation_alias=AliasChoices("totalForms", "formsChecked"))
    mismatches: list[dict[str, Any]] = Field(default_factory=list)
    details: list[dict[str, Any]] = Field(default_factory=list, validation_alias=AliasChoices("details", "events"))
    summary: dict[str, Any] = Field(default_factory=dict)

    @field_validator("missing", "extra", mode="before")
    @classmethod
    def _count_lists(cls, value: Any) -> Any:
        # Some backend versions return the offending rows rather than a count
        if isinstance(value, list):
            return len(value)
        return value

    @model_validator(mode="after")
    def _derive_from_summary(self) -> ServerIntegrityReport:
        if self.valid is None and isinstance(self.summary.get("healthy"), bool):
            self.valid = self.summary["healthy"]
        if self.missing is None and self.mismatches:
            self.missing = sum(1 for m in self.mismatches if m.get("type") in _MISSING_MISMATCH_TYPES)
        if self.extra is None and self.mismatches:
            self.extra = sum(1 for m in self.mismatches if m.get("type") in _EXTRA_MISMATCH_TYPES)
        if self.forms_checked is None and isinstance(self.summary.get("sourceFormAssignments"), int):
            self.forms_checked = self.summary["sourceFormAssignments"]
        return self

    @property
    def is_valid(self) -> bool:
        """Explicit server flag when present, else no missing and no extra."""
        if self.valid is not None:
            return self.valid
        return (self.missing or 0) == 0 and (self.extra or 0) == 0


class RefreshOutcome(_Resource):
    """Result of POST /events/verify/subject/:id/refresh-snapshots."""

    deleted: int = Field(default=0, validation_alias=AliasChoices("deleted", "deletedCount"))
    refreshed: int = Field(default=0, validation_alias=AliasChoices("refreshed", "refreshedCount", "created"))


class RepairOutcome(_Resource):
    """Result of POST /events/verify/subject/:id/repair."""

    repaired: int = Field(default=0, validation_alias=AliasChoices("repairedCount", "repaired"))
    errors: list[Any] = Field(default_factory=list)

    @field_validator("repaired", mode="before")
    @classmethod
    def _count_repaired_rows(cls, value: Any) -> Any:
        if isinstance(value, list):
            return len(value)
        return value
