# tests/unit/client/test_normalize.py
"""Tests for response envelope and key normalisation."""

import pytest
from pydantic import BaseModel, ValidationError

from edcprobe.client.normalize import (
    as_list,
    camelize,
    camelize_key,
    coerce_int,
    error_message,
    first_int,
    normalize_body,
    parse_rows,
)


class TestCamelize:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("patient_event_form_id", "patientEventFormId"),
            ("crf_id", "crfId"),
            ("alreadyCamel", "alreadyCamel"),
            ("_private_key", "_private_key"),
            ("plain", "plain"),
        ],
    )
    def test_keys(self, key: str, expected: str) -> None:
        assert camelize_key(key) == expected

    def test_nested_structures(self) -> None:
        body = {"event_rows": [{"study_event_id": 1, "crf_list": [{"crf_id": 2}]}]}

        assert camelize(body) == {"eventRows": [{"studyEventId": 1, "crfList": [{"crfId": 2}]}]}

    def test_form_data_values_are_opaque(self) -> None:
        body = {"snapshot_id": 1, "form_data": {"heart_rate": 72, "pain_level": 3}}

        assert camelize(body) == {"snapshotId": 1, "formData": {"heart_rate": 72, "pain_level": 3}}


class TestNormalizeBody:
    def test_bare_object_passes_through(self) -> None:
        assert normalize_body({"study_id": 3}) == ({"studyId": 3}, {})

    def test_bare_list_passes_through(self) -> None:
        assert normalize_body([{"id": 1}]) == ([{"id": 1}], {})

    def test_object_envelope_merges_siblings_under_data(self) -> None:
        body = {"success": True, "message": "ok", "total": 9, "data": {"id": 4, "total": 1}}

        payload, meta = normalize_body(body)

        assert payload == {"id": 4, "total": 1}
        assert meta == {"success": True, "message": "ok"}

    def test_list_envelope_keeps_siblings_as_meta(self) -> None:
        body = {"success": True, "data": [{"id": 1}], "pagination": {"page": 1}}

        payload, meta = normalize_body(body)

        assert payload == [{"id": 1}]
        assert meta == {"success": True, "pagination": {"page": 1}}

    def test_scalar_and_none(self) -> None:
        assert normalize_body(None) == (None, {})
        assert normalize_body("plain text") == ("plain text", {})


class TestListAndIntHelpers:
    def test_as_list_variants(self) -> None:
        assert as_list([1, 2]) == [1, 2]
        assert as_list({"rows": [3]}, "items", "rows") == [3]
        assert as_list({"items": "nope"}, "items") == []
        assert as_list(None, "rows") == []

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(5, 5), ("12", 12), (" 7 ", 7), ("-3", -3), (True, None), ("4.5", None), ("--5", None), (None, None), (3.0, None)],
    )
    def test_coerce_int(self, value: object, expected: int | None) -> None:
        assert coerce_int(value) == expected

    def test_first_int_takes_first_coercible(self) -> None:
        payload = {"studySubjectId": None, "subjectId": "x", "id": "41"}

        assert first_int(payload, "studySubjectId", "subjectId", "id") == 41

    def test_first_int_non_dict(self) -> None:
        assert first_int([1, 2], "id") is None
        assert first_int({"other": 1}, "id") is None


class TestErrorMessage:
    def test_prefers_message(self) -> None:
        assert error_message({"message": "Study not found", "code": 404}) == "Study not found"

    def test_falls_back_to_compact_json(self) -> None:
        assert error_message({"error": "bad"}) == '{"error":"bad"}'

    def test_text_and_none(self) -> None:
        assert error_message("Bad Gateway") == "Bad Gateway"
        assert error_message(None) == ""
        assert error_message([1]) == "[1]"


class _Row(BaseModel):
    id: int


def test_parse_rows_validates_every_row() -> None:
    assert parse_rows(_Row, {"rows": [{"id": 1}, {"id": "2"}]}, "rows") == [_Row(id=1), _Row(id=2)]

    with pytest.raises(ValidationError):
        parse_rows(_Row, [{"id": 1}, {"name": "no id"}])
