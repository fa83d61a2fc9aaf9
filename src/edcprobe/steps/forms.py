# src/edcprobe/steps/forms.py
"""Create the two base templates and their validation and workflow copies.

Each template is looked up by exact name first so a re-run reuses what
an earlier run created. Copies are made with the fork endpoint; when that
fails the copy is created from scratch with the same fields.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar

import structlog

from edcprobe.client.normalize import as_list, first_int
from edcprobe.contracts.results import ApiResult
from edcprobe.core.state import TestState
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import (
    GENERAL_FORM_NAME,
    LAB_FORM_NAME,
    VALIDATION_SUFFIX,
    WORKFLOW_SUFFIX,
    form_payload,
    general_fields,
    lab_fields,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TemplateSpec:
    slot: int
    base_name: str
    description: str
    fields: Callable[[], list[dict[str, Any]]]


TEMPLATES: tuple[TemplateSpec, ...] = (
    TemplateSpec(
        1,
        GENERAL_FORM_NAME,
        "Standard clinical assessment form with vitals, symptoms and clinical notes.",
        general_fields,
    ),
    TemplateSpec(
        2,
        LAB_FORM_NAME,
        "Advanced form with data tables, criteria checklists, question tables, calculated fields and file uploads.",
        lab_fields,
    ),
)


@dataclass(frozen=True, slots=True)
class TemplateRef:
    crf_id: int
    version_id: int | None = None


def _template_ref(result: ApiResult) -> TemplateRef | None:
    crf_id = first_int(result.data, "crfId", "newCrfId", "id")
    if not result.ok or crf_id is None:
        return None
    return TemplateRef(crf_id, first_int(result.data, "crfVersionId", "versionId"))


class _TemplateStep(Step):
    """Ensure one variant of both templates exists and store its ids.

    ``variant`` names the state fields (``{variant}_crf{slot}_id``). When
    ``source_variant`` is set, missing templates are forked from it.
    """

    variant: ClassVar[str]
    suffix: ClassVar[str] = ""
    source_variant: ClassVar[str | None] = None

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        if self.source_variant is None:
            require(state, "access_token")
        else:
            require(state, *(f"{self.source_variant}_crf{t.slot}_id" for t in TEMPLATES))

        listing = ctx.client.get("/forms", script=self.name, step="List existing templates")
        if not listing.ok:
            # Without the listing a create could duplicate an existing template
            return False
        existing = {
            str(row.get("name")): row for row in as_list(listing.data, "forms", "rows") if isinstance(row, dict)
        }

        ok = True
        for template in TEMPLATES:
            name = f"{template.base_name}{self.suffix}"
            label = f"{self.variant.capitalize()} eCRF {template.slot}"
            ref = self._reuse(existing.get(name))
            if ref is not None:
                ctx.sink.record_pass(self.name, label, f'reusing "{name}" (CRF ID: {ref.crf_id})')
            else:
                ref = self._produce(ctx, state, template, name, label)
            if ref is None:
                ok = False
                continue
            ctx.store.update(
                {
                    f"{self.variant}_crf{template.slot}_id": ref.crf_id,
                    f"{self.variant}_crf{template.slot}_version_id": ref.version_id,
                }
            )
        return ok

    @staticmethod
    def _reuse(row: dict[str, Any] | None) -> TemplateRef | None:
        if row is None:
            return None
        crf_id = first_int(row, "crfId", "id")
        if crf_id is None:
            return None
        return TemplateRef(crf_id, first_int(row, "crfVersionId", "versionId"))

    def _create(self, ctx: HarnessContext, template: TemplateSpec, name: str, label: str) -> TemplateRef | None:
        result = ctx.client.post(
            "/forms",
            json=form_payload(name, template.description, template.fields()),
            script=self.name,
            step=f"Create {label}",
        )
        ref = _template_ref(result)
        if ref is not None:
            ctx.sink.record_pass(self.name, f"Create {label}", f"CRF ID: {ref.crf_id}, Version ID: {ref.version_id}")
        elif result.ok:
            ctx.sink.record_failure(
                self.name, f"Create {label}", "POST /forms", result.status, "No crfId in response", response_body=result.raw
            )
        return ref

    def _produce(
        self, ctx: HarnessContext, state: TestState, template: TemplateSpec, name: str, label: str
    ) -> TemplateRef | None:
        if self.source_variant is None:
            return self._create(ctx, template, name, label)

        source_id = getattr(state, f"{self.source_variant}_crf{template.slot}_id")
        fork = ctx.client.post(
            f"/forms/{source_id}/fork",
            json={"newName": name, "description": f"{template.description} ({self.variant} copy)"},
            quiet=True,
            script=self.name,
            step=f"Fork {label}",
        )
        ref = _template_ref(fork)
        if ref is not None:
            ctx.sink.record_pass(self.name, f"Fork {label}", f"forked from {source_id} (CRF ID: {ref.crf_id})")
            return ref

        logger.info("template_fork_failed", source_id=source_id, status=fork.status, error=fork.error)
        ctx.sink.warn(self.name, label, f"Fork failed ({fork.status}); creating the copy from scratch")
        return self._create(ctx, template, name, label)


class CreateBaseTemplates(_TemplateStep):
    name = "03-create-base-ecrfs"
    title = "Create Base eCRF Templates"
    variant = "base"


class ForkValidationTemplates(_TemplateStep):
    name = "04-fork-ecrfs-validation"
    title = "Fork eCRFs for Validation"
    variant = "validation"
    suffix = VALIDATION_SUFFIX
    source_variant = "base"


class ForkWorkflowTemplates(_TemplateStep):
    name = "05-fork-ecrfs-workflow"
    title = "Fork eCRFs for Workflow"
    variant = "workflow"
    suffix = WORKFLOW_SUFFIX
    source_variant = "base"
