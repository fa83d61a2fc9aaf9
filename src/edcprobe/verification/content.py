# src/edcprobe/verification/content.py
"""Field-level validation of a snapshot's frozen form structure.

The backend materialises each template into a snapshot by unpacking field
metadata that is stored packed in a legacy column. When that unpacking goes
wrong the symptoms are recognisable: storage-layer type codes leak through
as field types, display labels end up in the name slot, the packing
delimiter survives inside labels, and complex fields lose their columns or
formula. Each of these is a backend defect, so every violation is a failure.
"""

from __future__ import annotations

from dataclasses import dataclass

from edcprobe.contracts.models import FormSnapshot, SnapshotField

RAW_STORAGE_TYPES: frozenset[str] = frozenset({"DATE", "ST", "INT", "REAL", "BL", "FILE", "BN", "CODE"})

# Types the snapshot materialiser is expected to emit after normalisation.
# Aliases (integer, group_calculation, ...) are deliberately absent.
CANONICAL_FIELD_TYPES: frozenset[str] = frozenset(
    {
        "text", "textarea", "number", "decimal", "date", "datetime", "time",
        "radio", "checkbox", "select", "combobox", "yesno", "file", "image", "signature",
        "table", "calculation", "criteria_list", "question_table", "inline_group",
        "height", "weight", "temperature", "heart_rate", "blood_pressure",
        "bmi", "respiration_rate", "oxygen_saturation",
        "barcode", "qrcode", "section_header", "static_text",
        "email", "phone", "address", "patient_name", "patient_id", "ssn",
        "medical_record_number", "medication", "diagnosis", "procedure", "lab_result",
        "date_of_birth", "age", "bsa", "egfr", "sum", "average",
    }
)  # fmt: skip

METADATA_DELIMITER = "---EXTENDED_PROPS---"

_LABEL_LIKE_NAME_LENGTH = 20


@dataclass(frozen=True, slots=True)
class FieldViolation:
    """One broken field (or an empty structure when ``field_name`` is None)."""

    snapshot_id: int
    form_name: str
    field_name: str | None
    rule: str
    expected: str
    observed: str

    def describe(self) -> str:
        target = f'field "{self.field_name}"' if self.field_name else "structure"
        return f'{target} in "{self.form_name}": {self.rule} (expected {self.expected}, got {self.observed})'


def _field_violations(snapshot: FormSnapshot, form_name: str, field: SnapshotField) -> list[FieldViolation]:
    found: list[FieldViolation] = []

    def flag(rule: str, expected: str, observed: object) -> None:
        found.append(
            FieldViolation(
                snapshot_id=snapshot.snapshot_id,
                form_name=form_name,
                field_name=field.name or field.label or "?",
                rule=rule,
                expected=expected,
                observed=repr(observed),
            )
        )

    field_type = field.field_type
    if not field_type:
        flag("missing_type", "a canonical field type", field_type)
    elif field_type in RAW_STORAGE_TYPES:
        flag("raw_storage_type", "a canonical field type", field_type)
    elif field_type not in CANONICAL_FIELD_TYPES:
        flag("unknown_type", "a canonical field type", field_type)

    if not field.name:
        flag("missing_name", "a technical field name", field.name)
    elif " " in field.name and len(field.name) > _LABEL_LIKE_NAME_LENGTH:
        flag("display_label_as_name", "a technical field name", field.name)

    if field.label and METADATA_DELIMITER in field.label:
        flag("raw_metadata_delimiter", f"a label without {METADATA_DELIMITER}", field.label)

    if field_type == "table" and not (isinstance(field.table_columns, list) and field.table_columns):
        flag("table_without_columns", "a non-empty tableColumns list", field.table_columns)
    if field_type == "calculation" and not field.calculation_formula:
        flag("calculation_without_formula", "a calculationFormula", field.calculation_formula)

    return found


def validate_snapshot(snapshot: FormSnapshot) -> list[FieldViolation]:
    """Check every field of one snapshot; an empty structure is itself a violation."""
    form_name = snapshot.form_name or "Unknown"
    if not snapshot.fields:
        return [
            FieldViolation(
                snapshot_id=snapshot.snapshot_id,
                form_name=form_name,
                field_name=None,
                rule="no_fields",
                expected="at least one field",
                observed="0 fields",
            )
        ]
    violations: list[FieldViolation] = []
    for field in snapshot.fields:
        violations.extend(_field_violations(snapshot, form_name, field))
    return violations
