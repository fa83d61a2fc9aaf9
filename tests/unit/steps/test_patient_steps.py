# tests/unit/steps/test_patient_steps.py
"""Tests for cleanup, data entry and the visit/snapshot step against a fake backend."""

import json
from collections.abc import Callable
from typing import Any

import httpx
import respx

from edcprobe.engine.context import HarnessContext
from edcprobe.steps.cleanup import Cleanup
from edcprobe.steps.data_entry import FillFormsAndTest
from edcprobe.steps.fixtures import GENERAL_FORM_NAME, LAB_FORM_NAME, snapshot_general_data, snapshot_lab_data
from edcprobe.steps.visits import PatientVisitsForms, VisitCheck

SUBJECT = 41
EVENTS = {501: 101, 502: 102, 503: 103}
CRFS = {1: GENERAL_FORM_NAME, 2: LAB_FORM_NAME}


class TestCleanup:
    def test_deletes_in_dependency_order_and_keeps_credentials(
        self, harness: HarnessContext, api: respx.MockRouter
    ) -> None:
        harness.store.update(org_id=3, admin_username="edcprobe_admin1", access_token="orig", study_id=12, subject_id=41)

        def login(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["username"] == "edcprobe_admin1":
                return httpx.Response(200, json={"accessToken": "cleanup-token"})
            return httpx.Response(401, json={"message": "Invalid credentials"})

        api.post("/auth/login").mock(side_effect=login)
        api.get("/studies").respond(
            200,
            json={"data": [{"study_id": 12, "name": "Automated E2E Test Study"}, {"study_id": 13, "name": "Real Study"}]},
        )
        api.get("/subjects").respond(200, json={"data": [{"study_subject_id": 41}]})
        api.get("/forms").respond(
            200,
            json=[
                {"crfId": 1, "name": GENERAL_FORM_NAME},
                {"crfId": 2, "name": "Production Intake Form"},
                {"crfId": 3, "name": f"{LAB_FORM_NAME} - Validation"},
            ],
        )
        api.get("/validation-rules/crf/1").respond(200, json={"rules": [{"validationRuleId": 71}]})
        api.get("/validation-rules/crf/3").respond(200, json=[])
        for path in ("/subjects/41", "/validation-rules/71", "/studies/12", "/forms/1", "/forms/3"):
            api.delete(path).respond(200, json={"success": True})

        assert Cleanup().run(harness)

        deleted = [c.request.url.path for c in api.calls if c.request.method == "DELETE"]
        assert deleted == [
            "/api/subjects/41",
            "/api/validation-rules/71",
            "/api/studies/12",
            "/api/forms/1",
            "/api/forms/3",
        ]
        assert harness.state.to_document() == {"orgId": 3, "adminUsername": "edcprobe_admin1", "accessToken": "orig"}
        assert harness.sink.failure_count() == 0

    def test_credentials_absent_before_cleanup_are_not_left_behind(
        self, harness: HarnessContext, api: respx.MockRouter
    ) -> None:
        harness.store.update(study_id=12)
        api.post("/auth/login").respond(200, json={"accessToken": "cleanup-token", "refreshToken": "cleanup-refresh"})
        api.get("/studies").respond(200, json={"data": []})
        api.get("/forms").respond(200, json={"data": []})

        assert Cleanup().run(harness)

        state = harness.state
        assert state.admin_username is None
        assert state.access_token is None
        assert state.refresh_token is None
        assert state.study_id is None

    def test_no_accounts_still_passes(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        api.post("/auth/login").respond(401)

        assert Cleanup().run(harness)

        assert harness.sink.failure_count() == 0


def _mount_data_entry(api: respx.MockRouter, save: Callable[[httpx.Request], httpx.Response]) -> respx.Route:
    api.get(f"/events/subject/{SUBJECT}").respond(
        200, json=[{"studyEventId": e, "studyEventDefinitionId": d} for e, d in EVENTS.items()]
    )
    api.get("/queries").respond(200, json={"data": []})
    return api.post("/forms/save").mock(side_effect=save)


def _data_entry_state(ctx: HarnessContext) -> None:
    ctx.store.update(
        study_id=12,
        subject_id=SUBJECT,
        event_definition_ids=list(EVENTS.values()),
        base_crf1_id=1,
        base_crf2_id=2,
        validation_crf1_id=3,
        validation_crf2_id=4,
        workflow_crf1_id=5,
        workflow_crf2_id=6,
    )


def _rule_enforcing_save(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    form = body["formData"]
    if not form or form.get("heart_rate") == "not_a_number":
        return httpx.Response(400, json={"message": "invalid form data"})
    if body["crfId"] >= 3 and (form.get("heart_rate") == 999 or form.get("patient_height") == 300):
        return httpx.Response(422, json={"message": "validation rule violated"})
    return httpx.Response(201, json={"success": True, "data": {"eventCrfId": 900 + body["crfId"]}})


class TestFillFormsAndTest:
    def test_rules_enforced(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        _data_entry_state(harness)
        save = _mount_data_entry(api, _rule_enforcing_save)

        assert FillFormsAndTest().run(harness)

        assert sorted(harness.state.event_crf_ids or []) == [901, 902, 903, 904, 905, 906]
        valid_calls = [json.loads(c.request.content) for c in save.calls][:6]
        assert {c["studyEventDefinitionId"] for c in valid_calls} == {101}
        assert harness.sink.failure_count() == 0

    def test_accepted_invalid_data_fails(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        _data_entry_state(harness)
        _mount_data_entry(api, lambda request: httpx.Response(201, json={"data": {"eventCrfId": 1}}))

        assert not FillFormsAndTest().run(harness)

        entries = harness.sink.read_entries()
        assert len(entries) == 4
        assert all(e["step"].startswith("[INVALID]") for e in entries)


def _snapshot_rows(event_id: int) -> list[dict[str, Any]]:
    return [
        {
            "patientEventFormId": event_id * 10 + crf_id,
            "studyEventId": event_id,
            "crfId": crf_id,
            "formName": name,
            "formStructure": {"fields": [{"name": "assessment_date", "type": "date", "label": "Assessment date"}]},
            "formData": snapshot_lab_data() if crf_id == 2 else snapshot_general_data(),
        }
        for crf_id, name in CRFS.items()
    ]


def _mount_visit_backend(
    api: respx.MockRouter, *, reject_incomplete: bool = True, scheduled: dict[int, int] = EVENTS
) -> None:
    api.get(f"/events/subject/{SUBJECT}").respond(
        200, json={"data": [{"studyEventId": e, "studyEventDefinitionId": d} for e, d in scheduled.items()]}
    )

    def save(request: httpx.Request) -> httpx.Response:
        form = json.loads(request.content)["formData"]
        if reject_incomplete and "clinical_notes" in form and "assessment_date" not in form:
            return httpx.Response(400, json={"message": "assessment_date is required"})
        return httpx.Response(200, json={"success": True})

    for event_id in EVENTS:
        api.get(f"/events/instance/{event_id}/visit-forms").respond(
            200, json=[{"crfId": c, "crfName": n, "requiredCrf": True} for c, n in CRFS.items()]
        )
        api.get(f"/events/instance/{event_id}/form-snapshots").respond(200, json={"data": _snapshot_rows(event_id)})
        for crf_id in CRFS:
            api.put(f"/events/patient-form/{event_id * 10 + crf_id}/data").mock(side_effect=save)

    api.get(f"/events/verify/subject/{SUBJECT}").respond(200, json={"data": {"valid": True}})
    api.post(f"/events/verify/subject/{SUBJECT}/refresh-snapshots").respond(200, json={"data": {"refreshed": 6}})
    api.post(f"/events/verify/subject/{SUBJECT}/repair").respond(200, json={"data": {"repaired": 0}})

    api.put("/events/patient-form/999999/data").respond(404, json={"message": "not found"})
    api.get("/events/instance/999999/visit-forms").respond(404, json={"message": "not found"})
    api.post("/events/unscheduled").respond(201, json={"data": {"studyEventId": 601}})
    api.get("/events/instance/601/form-snapshots").respond(200, json=_snapshot_rows(601))


class TestPatientVisitsForms:
    def _state(self, ctx: HarnessContext) -> None:
        ctx.store.update(study_id=12, subject_id=SUBJECT, event_definition_ids=list(EVENTS.values()))

    def test_consistent_backend_passes(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        self._state(harness)
        _mount_visit_backend(api)

        assert PatientVisitsForms().run(harness)

        state = harness.state
        assert len(state.snapshot_ids or []) == 6
        assert state.unscheduled_event_ids == [601]
        assert harness.sink.failure_count() == 0

    def test_unscheduled_visit_is_reused(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        self._state(harness)
        harness.store.update(unscheduled_event_ids=[601])
        _mount_visit_backend(api)

        assert PatientVisitsForms().run(harness)

        assert not any(c.request.url.path == "/api/events/unscheduled" for c in api.calls)

    def test_accepted_incomplete_save_fails(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        self._state(harness)
        _mount_visit_backend(api, reject_incomplete=False)

        assert not PatientVisitsForms().run(harness)

        assert [e["step"] for e in harness.sink.read_entries()] == ["Required-field rejection"]

    def test_no_visits_fails(self, harness: HarnessContext, api: respx.MockRouter) -> None:
        harness.store.update(study_id=12, subject_id=SUBJECT)
        _mount_visit_backend(api, scheduled={})

        assert not PatientVisitsForms().run(harness)

        assert any(e["error"] == "Patient has no scheduled visits" for e in harness.sink.read_entries())


def test_visit_check_names_failed_phases() -> None:
    check = VisitCheck(content=False, required_rejected=False)

    assert not check.ok
    assert check.failed_phases() == ["content validation", "required-field rejection", "snapshot integrity"]
