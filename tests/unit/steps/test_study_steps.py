# tests/unit/steps/test_study_steps.py
"""Tests for template, study, patient and visit scheduling steps."""

import json

import httpx
import pytest
import respx

from edcprobe.contracts.errors import MissingPrerequisiteError
from edcprobe.engine.context import HarnessContext
from edcprobe.steps.fixtures import GENERAL_FORM_NAME, LAB_FORM_NAME, SUBJECT_LABEL, VALIDATION_SUFFIX
from edcprobe.steps.forms import CreateBaseTemplates, ForkValidationTemplates
from edcprobe.steps.patient import CreatePatient
from edcprobe.steps.scheduling import ensure_visits_scheduled
from edcprobe.steps.study import TEMPLATE_FIELDS, CreateStudy

_STUDY_DETAIL = {
    "success": True,
    "data": {
        "study_id": 12,
        "sites": [{"study_id": 13}, {"study_id": 14}],
        "event_definitions": [
            {"study_event_definition_id": 101, "name": "Screening Visit", "crfs": [{"crf_id": 1}]},
            {"study_event_definition_id": 102, "name": "Baseline Visit", "crfs": []},
            {"study_event_definition_id": 103, "name": "Week 4 Follow-up", "crfs": []},
        ],
    },
}


def _with_templates(ctx: HarnessContext) -> None:
    ctx.store.update(
        access_token="tok",
        admin_username="edcprobe_admin1",
        **{field: n for n, field in enumerate(TEMPLATE_FIELDS, start=1)},
    )


class _FormBackend:
    """Template listing, creation and forking against an in-memory table."""

    def __init__(self) -> None:
        self.forms: list[dict[str, object]] = []

    def _add(self, name: str) -> httpx.Response:
        crf_id = len(self.forms) + 1
        self.forms.append({"crf_id": crf_id, "name": name})
        return httpx.Response(201, json={"data": {"crfId": crf_id}})

    def listing(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": list(self.forms)})

    def create(self, request: httpx.Request) -> httpx.Response:
        return self._add(json.loads(request.content)["name"])

    def fork(self, request: httpx.Request) -> httpx.Response:
        return self._add(json.loads(request.content)["newName"])


class TestTemplates:
    def test_base_templates_reused_by_exact_name(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(access_token="tok")
        api.get("/forms").respond(
            200,
            json={
                "data": [
                    {"crf_id": 1, "name": GENERAL_FORM_NAME, "crf_version_id": 10},
                    {"crf_id": 2, "name": LAB_FORM_NAME},
                    {"crf_id": 3, "name": f"{GENERAL_FORM_NAME}{VALIDATION_SUFFIX}"},
                ]
            },
        )
        create = api.post("/forms").respond(201, json={})

        assert CreateBaseTemplates().run(harness)

        state = harness.state
        assert (state.base_crf1_id, state.base_crf1_version_id, state.base_crf2_id) == (1, 10, 2)
        assert create.call_count == 0

    def test_base_templates_created_when_absent(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(access_token="tok")
        api.get("/forms").respond(200, json={"data": []})
        create = api.post("/forms").mock(
            side_effect=[
                httpx.Response(201, json={"data": {"crfId": 1, "crfVersionId": 10}}),
                httpx.Response(201, json={"data": {"crfId": 2, "crfVersionId": 20}}),
            ]
        )

        assert CreateBaseTemplates().run(harness)

        names = [json.loads(c.request.content)["name"] for c in create.calls]
        assert names == [GENERAL_FORM_NAME, LAB_FORM_NAME]
        assert (harness.state.base_crf2_id, harness.state.base_crf2_version_id) == (2, 20)

    def test_create_without_id_is_a_failure(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(access_token="tok")
        api.get("/forms").respond(200, json=[])
        api.post("/forms").respond(201, json={"success": True, "data": {}})

        assert not CreateBaseTemplates().run(harness)

        assert {e["error"] for e in harness.sink.read_entries()} == {"No crfId in response"}

    def test_failed_fork_falls_back_to_create(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(base_crf1_id=1, base_crf2_id=2)
        api.get("/forms").respond(200, json=[])
        fork1 = api.post("/forms/1/fork").respond(201, json={"data": {"newCrfId": 5}})
        api.post("/forms/2/fork").respond(500, json={"message": "fork unsupported"})
        create = api.post("/forms").respond(201, json={"data": {"crfId": 6}})

        assert ForkValidationTemplates().run(harness)

        assert json.loads(fork1.calls.last.request.content)["newName"] == f"{GENERAL_FORM_NAME}{VALIDATION_SUFFIX}"
        assert json.loads(create.calls.last.request.content)["name"] == f"{LAB_FORM_NAME}{VALIDATION_SUFFIX}"
        assert (harness.state.validation_crf1_id, harness.state.validation_crf2_id) == (5, 6)
        assert harness.sink.failure_count() == 0

    def test_failed_listing_creates_nothing(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(access_token="tok")
        api.get("/forms").respond(503, json={"message": "database unavailable"})
        create = api.post("/forms").respond(201, json={"data": {"crfId": 1}})

        assert not CreateBaseTemplates().run(harness)

        assert create.call_count == 0
        assert harness.state.base_crf1_id is None
        (entry,) = harness.sink.read_entries()
        assert entry["endpoint"] == "GET /forms"

    def test_rerun_reuses_created_templates(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(access_token="tok")
        backend = _FormBackend()
        api.get("/forms").mock(side_effect=backend.listing)
        create = api.post("/forms").mock(side_effect=backend.create)

        assert CreateBaseTemplates().run(harness)
        first = (harness.state.base_crf1_id, harness.state.base_crf2_id)
        assert CreateBaseTemplates().run(harness)

        assert create.call_count == 2
        assert (harness.state.base_crf1_id, harness.state.base_crf2_id) == first == (1, 2)

    def test_rerun_reuses_forked_templates(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(base_crf1_id=1, base_crf2_id=2)
        backend = _FormBackend()
        api.get("/forms").mock(side_effect=backend.listing)
        create = api.post("/forms").mock(side_effect=backend.create)
        forks = [api.post(f"/forms/{crf_id}/fork").mock(side_effect=backend.fork) for crf_id in (1, 2)]

        assert ForkValidationTemplates().run(harness)
        assert ForkValidationTemplates().run(harness)

        assert [route.call_count for route in forks] == [1, 1]
        assert create.call_count == 0
        assert len(backend.forms) == 2
        assert harness.sink.failure_count() == 0

    def test_fork_needs_base_templates(self, harness: HarnessContext) -> None:
        with pytest.raises(MissingPrerequisiteError, match="03-create-base-ecrfs"):
            ForkValidationTemplates().run(harness)


class TestCreateStudy:
    def test_creates_and_stores_structure(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        _with_templates(harness)
        create = api.post("/studies").respond(201, json={"data": {"studyId": 12, "ocOid": "S_PROBE"}})
        api.get("/studies/12").respond(200, json=_STUDY_DETAIL)

        assert CreateStudy().run(harness)

        payload = json.loads(create.calls.last.request.content)
        assert "E2E Test Study" in payload["name"]
        state = harness.state
        assert state.study_id == 12
        assert state.study_oid == "S_PROBE"
        assert state.site_ids == [13, 14]
        assert state.event_definition_ids == [101, 102, 103]

    def test_reuses_stored_study(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        _with_templates(harness)
        harness.store.update(study_id=12)
        detail = api.get("/studies/12").respond(200, json=_STUDY_DETAIL)
        create = api.post("/studies").respond(201, json={})

        assert CreateStudy().run(harness)

        assert create.call_count == 0
        assert detail.call_count == 1

    def test_stale_study_is_recreated(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        _with_templates(harness)
        harness.store.update(study_id=7)
        api.get("/studies/7").respond(404, json={"message": "not found"})
        api.post("/studies").respond(201, json={"data": {"id": 12}})
        api.get("/studies/12").respond(200, json=_STUDY_DETAIL)

        assert CreateStudy().run(harness)

        assert harness.state.study_id == 12
        assert harness.sink.failure_count() == 0

    def test_no_visit_definitions_is_a_failure(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        _with_templates(harness)
        api.post("/studies").respond(201, json={"data": {"studyId": 12}})
        api.get("/studies/12").respond(200, json={"data": {"studyId": 12, "eventDefinitions": []}})

        assert not CreateStudy().run(harness)

        (entry,) = harness.sink.read_entries()
        assert entry["step"] == "Extract event definitions"


class TestCreatePatient:
    def test_enrolls_and_stores_events(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(study_id=12, event_definition_ids=[101, 102, 103])
        create = api.post("/subjects").respond(201, json={"data": {"studySubjectId": 41, "label": SUBJECT_LABEL}})
        api.get("/events/subject/41").respond(200, json={"data": [{"study_event_id": 501, "study_event_definition_id": 101}]})

        assert CreatePatient().run(harness)

        payload = json.loads(create.calls.last.request.content)
        assert payload["studyId"] == 12
        state = harness.state
        assert (state.subject_id, state.study_subject_id, state.study_event_ids) == (41, SUBJECT_LABEL, [501])

    def test_reuses_existing_patient(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(study_id=12, subject_id=41)
        api.get("/subjects/41").respond(200, json={"data": {"studySubjectId": 41}})
        create = api.post("/subjects").respond(201, json={})
        api.get("/events/subject/41").respond(200, json=[])

        assert CreatePatient().run(harness)

        assert create.call_count == 0

    def test_response_without_id_is_a_failure(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(study_id=12)
        api.post("/subjects").respond(201, json={"success": True, "message": "created"})

        assert not CreatePatient().run(harness)

        assert harness.sink.read_entries()[0]["step"] == "Extract subjectId"


class TestEnsureVisitsScheduled:
    def test_schedules_only_missing_definitions(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        api.get("/events/subject/41").mock(
            side_effect=[
                httpx.Response(200, json=[{"studyEventId": 501, "studyEventDefinitionId": 101}]),
                httpx.Response(
                    200,
                    json=[
                        {"studyEventId": 501, "studyEventDefinitionId": 101},
                        {"studyEventId": 502, "studyEventDefinitionId": 102},
                        {"studyEventId": 503, "studyEventDefinitionId": 103},
                    ],
                ),
            ]
        )
        schedule = api.post("/events/schedule").respond(201, json={"data": {"studyEventId": 999}})

        events, ok = ensure_visits_scheduled(harness, "10-fill-forms-and-test", 41, [101, 102, 103, 104])

        assert ok
        assert [json.loads(c.request.content)["studyEventDefinitionId"] for c in schedule.calls] == [102, 103]
        assert [e.event_id for e in events] == [501, 502, 503]
        assert harness.state.study_event_ids == [501, 502, 503]

    def test_nothing_to_schedule(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        listing = api.get("/events/subject/41").respond(
            200, json=[{"studyEventId": 500 + n, "studyEventDefinitionId": 100 + n} for n in (1, 2, 3)]
        )
        schedule = api.post("/events/schedule").respond(201, json={})

        _, ok = ensure_visits_scheduled(harness, "12-patient-visits-forms", 41, [101, 102, 103])

        assert ok
        assert schedule.call_count == 0
        assert listing.call_count == 1

    def test_failed_schedule_is_reported(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        api.get("/events/subject/41").respond(200, json=[])
        api.post("/events/schedule").respond(400, json={"message": "definition not in study"})

        _, ok = ensure_visits_scheduled(harness, "12-patient-visits-forms", 41, [101])

        assert not ok
        assert harness.sink.read_entries()[0]["error"] == "definition not in study"
