# src/edcprobe/steps/study.py
"""Create the test study: two sites, three visits, every template on every visit."""

from __future__ import annotations

import time
from typing import Any

from edcprobe.client.normalize import as_list, first_int
from edcprobe.contracts.results import ApiResult
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import study_payload

TEMPLATE_FIELDS = (
    "base_crf1_id",
    "base_crf2_id",
    "validation_crf1_id",
    "validation_crf2_id",
    "workflow_crf1_id",
    "workflow_crf2_id",
)


class CreateStudy(Step):
    """Create (or reuse) the study and record its site and visit definition ids.

    A study whose details come back without any visit definitions is a
    failure: every later step schedules visits from those definitions.
    """

    name = "06-create-study"
    title = "Create Study"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, *TEMPLATE_FIELDS, "admin_username")

        study_id = state.study_id
        detail: ApiResult | None = None
        if study_id is not None:
            detail = ctx.client.get(f"/studies/{study_id}", quiet=True, script=self.name, step="Check existing study")
            if detail.ok:
                ctx.sink.record_pass(self.name, "Study", f"reusing study {study_id}")
            else:
                ctx.sink.info(f"Stored study {study_id} not found ({detail.status}); creating a new one")
                study_id = None
                detail = None

        if study_id is None:
            crf_ids = [getattr(state, f) for f in TEMPLATE_FIELDS]
            payload = study_payload(crf_ids, state.admin_username, state.admin_email, f"{int(time.time()):X}")
            created = ctx.client.post("/studies", json=payload, script=self.name, step="Create study")
            if not created.ok:
                return False
            study_id = first_int(created.data, "studyId", "id")
            if study_id is None:
                ctx.sink.record_failure(
                    self.name,
                    "Create study",
                    "POST /studies",
                    created.status,
                    "No studyId in response",
                    response_body=created.raw,
                )
                return False
            # first_int only finds an id in a mapping
            ctx.store.update(study_id=study_id, study_oid=created.data.get("ocOid"))
            ctx.sink.record_pass(self.name, "Create study", f'"{payload["name"]}" (ID: {study_id})')

        if detail is None:
            ctx.sink.info("Fetching study details to capture site and visit ids...")
            detail = ctx.client.get(f"/studies/{study_id}", script=self.name, step="Fetch study details")
            if not detail.ok:
                return False
        return self._store_structure(ctx, study_id, detail)

    def _store_structure(self, ctx: HarnessContext, study_id: int, detail: ApiResult) -> bool:
        data: dict[str, Any] = detail.data if isinstance(detail.data, dict) else {}

        site_ids = [
            sid for sid in (first_int(s, "siteId", "id", "studyId") for s in as_list(data, "sites")) if sid is not None
        ]
        if site_ids:
            ctx.store.update(site_ids=site_ids)
            ctx.sink.record_pass(self.name, "Sites", f"{len(site_ids)} (IDs: {', '.join(map(str, site_ids))})")

        definitions = as_list(data, "eventDefinitions")
        definition_ids = [
            did for did in (first_int(e, "studyEventDefinitionId", "id") for e in definitions) if did is not None
        ]
        if not definition_ids:
            ctx.sink.record_failure(
                self.name,
                "Extract event definitions",
                f"GET /studies/{study_id}",
                detail.status,
                "Study details returned OK but no event definitions found",
                response_body=detail.raw,
            )
            return False

        ctx.store.update(event_definition_ids=definition_ids)
        ctx.sink.record_pass(self.name, "Visits", f"{len(definition_ids)} (IDs: {', '.join(map(str, definition_ids))})")
        for definition in definitions:
            if isinstance(definition, dict):
                assigned = as_list(definition, "crfAssignments", "crfs")
                ctx.sink.record_pass(self.name, f'Visit "{definition.get("name")}"', f"{len(assigned)} CRFs assigned")
        return True
