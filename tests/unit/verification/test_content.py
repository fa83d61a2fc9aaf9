# tests/unit/verification/test_content.py
"""Tests for field-level snapshot structure validation."""

from typing import Any

import pytest

from edcprobe.contracts.models import FormSnapshot
from edcprobe.verification.content import METADATA_DELIMITER, validate_snapshot


def _snapshot(*fields: dict[str, Any], name: str = "General Assessment Form") -> FormSnapshot:
    return FormSnapshot.model_validate({"patientEventFormId": 1, "formName": name, "fields": list(fields)})


def _rules(snapshot: FormSnapshot) -> list[str]:
    return [v.rule for v in validate_snapshot(snapshot)]


def test_clean_snapshot_has_no_violations() -> None:
    snapshot = _snapshot(
        {"name": "assessment_date", "type": "date", "label": "Assessment date"},
        {"name": "vitals", "type": "table", "label": "Vitals", "tableColumns": [{"name": "bp"}]},
        {"name": "bmi", "type": "calculation", "label": "BMI", "calculationFormula": "weight / height^2"},
    )

    assert validate_snapshot(snapshot) == []


def test_empty_structure_is_a_violation() -> None:
    (violation,) = validate_snapshot(_snapshot())

    assert violation.rule == "no_fields"
    assert violation.field_name is None
    assert violation.describe().startswith('structure in "General Assessment Form"')


@pytest.mark.parametrize("raw_type", ["DATE", "ST", "INT", "REAL", "BL", "FILE", "BN", "CODE"])
def test_storage_type_codes_leak(raw_type: str) -> None:
    assert _rules(_snapshot({"name": "f", "type": raw_type})) == ["raw_storage_type"]


@pytest.mark.parametrize("alias", ["integer", "group_calculation", "dropdown"])
def test_unknown_type_is_a_violation(alias: str) -> None:
    assert _rules(_snapshot({"name": "f", "type": alias})) == ["unknown_type"]


def test_missing_type() -> None:
    assert _rules(_snapshot({"name": "f"})) == ["missing_type"]


def test_display_label_in_name_slot() -> None:
    assert _rules(_snapshot({"name": "Date of the clinical assessment", "type": "date"})) == ["display_label_as_name"]


def test_short_name_with_space_is_tolerated() -> None:
    assert _rules(_snapshot({"name": "pain level", "type": "number"})) == []


def test_missing_name() -> None:
    assert _rules(_snapshot({"type": "text", "label": "Notes"})) == ["missing_name"]


def test_packing_delimiter_in_label() -> None:
    label = f"Heart rate{METADATA_DELIMITER}{{\"unit\": \"bpm\"}}"

    assert _rules(_snapshot({"name": "heart_rate", "type": "number", "label": label})) == ["raw_metadata_delimiter"]


@pytest.mark.parametrize("columns", [None, [], "bp,hr"])
def test_table_without_columns(columns: Any) -> None:
    assert _rules(_snapshot({"name": "vitals", "type": "table", "tableColumns": columns})) == ["table_without_columns"]


def test_calculation_without_formula() -> None:
    assert _rules(_snapshot({"name": "bmi", "type": "calculation"})) == ["calculation_without_formula"]


def test_violations_accumulate_across_fields() -> None:
    snapshot = _snapshot({"name": "a", "type": "ST"}, {"type": "number"}, {"name": "c", "type": "calculation"})

    assert _rules(snapshot) == ["raw_storage_type", "missing_name", "calculation_without_formula"]


def test_describe_names_field_and_form() -> None:
    (violation,) = validate_snapshot(_snapshot({"name": "heart_rate", "type": "INT"}, name="Lab Results Form"))

    assert violation.describe() == (
        "field \"heart_rate\" in \"Lab Results Form\": raw_storage_type (expected a canonical field type, got 'INT')"
    )
