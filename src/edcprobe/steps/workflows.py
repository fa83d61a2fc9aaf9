# src/edcprobe/steps/workflows.py
"""Configure SDV, signature and double-entry requirements on the workflow templates."""

from __future__ import annotations

from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step

# (slot, requiresSDV, requiresSignature, requiresDDE)
WORKFLOW_CONFIGS: tuple[tuple[int, bool, bool, bool], ...] = (
    (1, True, True, False),
    (2, True, False, True),
)


class SetupWorkflows(Step):
    """Route queries on both workflow templates to the monitor member and read the config back."""

    name = "08-setup-workflows"
    title = "Setup Workflow Configuration"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, "workflow_crf1_id", "workflow_crf2_id")

        route_to = state.member2_username or ctx.settings.members[1].username
        ctx.sink.info(f"Query routing target: {route_to}")

        ok = True
        for slot, sdv, signature, dde in WORKFLOW_CONFIGS:
            crf_id = getattr(state, f"workflow_crf{slot}_id")
            path = f"/forms/workflow-config/{crf_id}"
            label = f"Workflow eCRF {slot}"
            desired = {
                "requiresSDV": sdv,
                "requiresSignature": signature,
                "requiresDDE": dde,
                "queryRouteToUsers": [route_to],
                "studyId": state.study_id,
            }
            configured = ctx.client.put(path, json=desired, script=self.name, step=f"Configure {label}")
            if not configured.ok:
                ok = False
                continue
            ctx.sink.record_pass(self.name, f"Configure {label}", f"SDV={sdv}, Signature={signature}, DDE={dde}")

            readback = ctx.client.get(
                path,
                params={"studyId": state.study_id} if state.study_id is not None else None,
                script=self.name,
                step=f"Verify {label} config",
            )
            if not readback.ok:
                ok = False
                continue
            config = readback.data if isinstance(readback.data, dict) else {}
            ctx.sink.record_pass(
                self.name,
                f"Verify {label} config",
                f"SDV={config.get('requiresSDV')}, Sig={config.get('requiresSignature')}, "
                f"DDE={config.get('requiresDDE')}, Routes={config.get('queryRouteToUsers')}",
            )
        return ok
