# src/edcprobe/steps/data_entry.py
"""Enter valid and rule-violating data and check how the backend responds.

Valid data goes to all six templates on the first visit; each save must
succeed. Rule-violating data goes to the validation and workflow copies on
the second visit; each save must be rejected. Edge cases (an empty form,
wrong value types, a duplicate submission) have no single correct answer,
so an unexpected outcome there is a warning.
"""

from __future__ import annotations

from typing import Any

import structlog

from edcprobe.client.normalize import as_list, first_int
from edcprobe.contracts.results import ApiResult
from edcprobe.core.state import TestState
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import (
    invalid_general_data,
    invalid_lab_data,
    valid_general_data,
    valid_lab_data,
)
from edcprobe.steps.scheduling import ensure_visits_scheduled

logger = structlog.get_logger(__name__)

SAVE_PATH = "/forms/save"

# (state field, general template?, label)
TEMPLATE_SLOTS: tuple[tuple[str, bool, str], ...] = (
    ("base_crf1_id", True, "Base eCRF 1"),
    ("base_crf2_id", False, "Base eCRF 2"),
    ("validation_crf1_id", True, "Validation eCRF 1"),
    ("validation_crf2_id", False, "Validation eCRF 2"),
    ("workflow_crf1_id", True, "Workflow eCRF 1"),
    ("workflow_crf2_id", False, "Workflow eCRF 2"),
)

RULE_CHECKED_SLOTS = frozenset({"validation_crf1_id", "validation_crf2_id", "workflow_crf1_id", "workflow_crf2_id"})

_QUERY_PREVIEW_LIMIT = 10


class FillFormsAndTest(Step):
    name = "10-fill-forms-and-test"
    title = "Fill Forms and Test"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, "study_id", "subject_id", "event_definition_ids")

        definitions = state.event_definition_ids or []
        if len(definitions) < 3:
            ctx.sink.warn(self.name, "Event definitions", f"only {len(definitions)} found, expected 3")

        _, scheduled_ok = ensure_visits_scheduled(ctx, self.name, state.subject_id, definitions)

        screening = definitions[0]
        baseline = definitions[1] if len(definitions) > 1 else screening

        ctx.sink.info("Fill every template with valid data (first visit)")
        valid_ok = self._fill_valid(ctx, state, screening)

        ctx.sink.info("Submit rule-violating data (second visit)")
        invalid_ok = self._submit_invalid(ctx, state, baseline)

        ctx.sink.info("Edge cases")
        self._edge_cases(ctx, state, screening, baseline)

        ctx.sink.info("Check queries and workflow tasks")
        self._check_queries(ctx, state)

        logger.info("data_entry_finished", scheduled=scheduled_ok, valid_saved=valid_ok, invalid_rejected=invalid_ok)
        return scheduled_ok and valid_ok and invalid_ok

    def _save(
        self,
        ctx: HarnessContext,
        state: TestState,
        definition_id: int,
        crf_id: int,
        form_data: dict[str, Any],
        label: str,
        *,
        quiet: bool = False,
    ) -> ApiResult:
        return ctx.client.post(
            SAVE_PATH,
            json={
                "studyId": state.study_id,
                "subjectId": state.subject_id,
                "studyEventDefinitionId": definition_id,
                "crfId": crf_id,
                "formData": form_data,
            },
            quiet=quiet,
            script=self.name,
            step=label,
        )

    def _fill_valid(self, ctx: HarnessContext, state: TestState, definition_id: int) -> bool:
        ok = True
        event_crf_ids: list[int] = []
        for field, general, label in TEMPLATE_SLOTS:
            crf_id = getattr(state, field)
            if crf_id is None:
                ctx.sink.warn(self.name, label, "template id missing from state; skipped")
                continue
            step_label = f"[VALID] {label} (CRF {crf_id})"
            data = valid_general_data() if general else valid_lab_data()
            result = self._save(ctx, state, definition_id, crf_id, data, step_label)
            if not result.ok:
                ok = False
                continue
            event_crf_id = first_int(result.data, "eventCrfId")
            if event_crf_id is not None:
                event_crf_ids.append(event_crf_id)
            ctx.sink.record_pass(self.name, step_label, f"saved (eventCrfId: {event_crf_id or '?'})")
        if event_crf_ids:
            ctx.store.update(event_crf_ids=event_crf_ids)
        return ok

    def _submit_invalid(self, ctx: HarnessContext, state: TestState, definition_id: int) -> bool:
        ok = True
        for field, general, label in TEMPLATE_SLOTS:
            crf_id = getattr(state, field)
            if field not in RULE_CHECKED_SLOTS or crf_id is None:
                continue
            step_label = f"[INVALID] {label} (CRF {crf_id})"
            data = invalid_general_data() if general else invalid_lab_data()
            result = self._save(ctx, state, definition_id, crf_id, data, step_label, quiet=True)
            if not result.ok:
                ctx.sink.record_pass(self.name, step_label, f"correctly rejected ({result.status}): {result.error}")
                continue
            ok = False
            ctx.sink.record_failure(
                self.name,
                step_label,
                f"POST {SAVE_PATH} (crfId: {crf_id})",
                result.status,
                "Expected rejection but request SUCCEEDED; validation rules did not trigger",
                request_body=data,
                response_body=result.raw,
            )
        return ok

    def _edge_cases(self, ctx: HarnessContext, state: TestState, screening: int, baseline: int) -> None:
        first_crf = state.base_crf1_id
        if first_crf is None:
            ctx.sink.warn(self.name, "Edge cases", "base eCRF 1 missing from state; skipped")
            return

        cases: list[tuple[str, int, dict[str, Any], bool]] = [
            ("[EDGE] Empty form data", baseline, {}, False),
            (
                "[EDGE] Wrong data types",
                baseline,
                {"heart_rate": "not_a_number", "assessment_date": 12345, "pain_level": {"invalid": True}},
                False,
            ),
            # May succeed as an update or fail as a duplicate
            ("[EDGE] Duplicate submission", screening, valid_general_data(), True),
        ]
        for label, definition_id, data, expect_accept in cases:
            result = self._save(ctx, state, definition_id, first_crf, data, label, quiet=True)
            outcome = "accepted" if result.ok else f"rejected ({result.status})"
            if result.ok == expect_accept:
                ctx.sink.record_pass(self.name, label, outcome)
            else:
                ctx.sink.warn(self.name, label, f"{outcome}; expected {'acceptance' if expect_accept else 'rejection'}")

    def _check_queries(self, ctx: HarnessContext, state: TestState) -> None:
        result = ctx.client.get(
            "/queries", params={"studyId": state.study_id, "limit": 50}, script=self.name, step="Fetch queries for study"
        )
        if result.ok:
            queries = as_list(result.data, "queries", "items", "rows")
            if not queries:
                ctx.sink.info("No queries found for this study (workflow may not auto-generate on save)")
            else:
                ctx.sink.record_pass(self.name, "Queries", f"{len(queries)} found for the study")
                for query in queries[:_QUERY_PREVIEW_LIMIT]:
                    if isinstance(query, dict):
                        ctx.sink.info(_describe_query(query))

        if state.member2_user_id is not None:
            tasks = ctx.client.get(
                f"/workflows/user/{state.member2_user_id}", script=self.name, step="Check monitor workflow tasks"
            )
            if tasks.ok:
                ctx.sink.record_pass(self.name, "Monitor workflow tasks", f"{len(as_list(tasks.data, 'tasks'))} task(s)")


def _describe_query(query: dict[str, Any]) -> str:
    def pick(*keys: str) -> Any:
        return next((query[k] for k in keys if query.get(k) is not None), None)

    status = pick("statusName", "resolutionStatus", "status") or "?"
    assignee = pick("assignedUsername", "assignedUser", "assignedTo") or "unassigned"
    description = str(pick("description") or "")[:60]
    return f'Query #{pick("id", "discrepancyNoteId")}: "{description}" [{status}] -> {assignee}'
