# src/edcprobe/steps/validation_rules.py
"""Attach range, format and required rules to the validation and workflow templates."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from edcprobe.client.normalize import as_list, first_int
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import GENERAL_RULES, LAB_RULES

# (state field, rules, label)
RULE_TARGETS: tuple[tuple[str, Sequence[dict[str, Any]], str], ...] = (
    ("validation_crf1_id", GENERAL_RULES, "Validation eCRF 1"),
    ("validation_crf2_id", LAB_RULES, "Validation eCRF 2"),
    ("workflow_crf1_id", GENERAL_RULES, "Workflow eCRF 1"),
    ("workflow_crf2_id", LAB_RULES, "Workflow eCRF 2"),
)

_RULE_ID_KEYS = ("validationRuleId", "ruleId", "id")


class CreateValidationRules(Step):
    """Create each rule unless a rule of the same name already exists on the template."""

    name = "07-create-validation-rules"
    title = "Create Validation Rules"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, *(field for field, _, _ in RULE_TARGETS))

        rule_ids: list[int] = []
        ok = True
        for field, rules, label in RULE_TARGETS:
            crf_id = getattr(state, field)
            ids, target_ok = self._ensure_rules(ctx, crf_id, rules, label)
            rule_ids.extend(ids)
            ok = ok and target_ok

        ctx.store.update(validation_rule_ids=rule_ids)
        ctx.sink.record_pass(self.name, "Validation rules", f"{len(rule_ids)} rule(s) in place")
        return ok and bool(rule_ids)

    def _ensure_rules(
        self, ctx: HarnessContext, crf_id: int, rules: Sequence[dict[str, Any]], label: str
    ) -> tuple[list[int], bool]:
        listing = ctx.client.get(
            f"/validation-rules/crf/{crf_id}", quiet=True, script=self.name, step=f"List rules for {label}"
        )
        existing = {
            str(row.get("name")): first_int(row, *_RULE_ID_KEYS)
            for row in as_list(listing.data, "rules", "rows")
            if isinstance(row, dict)
        }

        ids: list[int] = []
        reused = 0
        ok = True
        for rule in rules:
            existing_id = existing.get(rule["name"])
            if existing_id is not None:
                ids.append(existing_id)
                reused += 1
                continue
            result = ctx.client.post(
                "/validation-rules",
                json={"crfId": crf_id, **rule},
                script=self.name,
                step=f"{label}: {rule['name']}",
            )
            if not result.ok:
                ok = False
                continue
            rule_id = first_int(result.data, *_RULE_ID_KEYS)
            if rule_id is None:
                ctx.sink.record_failure(
                    self.name,
                    f"{label}: {rule['name']}",
                    "POST /validation-rules",
                    result.status,
                    "No rule id in response",
                    response_body=result.raw,
                )
                ok = False
                continue
            ids.append(rule_id)
            ctx.sink.record_pass(self.name, f"{label}: {rule['name']}", f"rule ID {rule_id}")

        if reused:
            ctx.sink.info(f"{label} (CRF {crf_id}): reused {reused} existing rule(s)")
        return ids, ok
