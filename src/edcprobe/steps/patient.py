# src/edcprobe/steps/patient.py
"""Enroll the test patient and schedule its first visit."""

from __future__ import annotations

import time

from edcprobe.client.normalize import first_int
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import SUBJECT_LABEL, subject_payload
from edcprobe.verification.integrity import SnapshotVerifier


class CreatePatient(Step):
    name = "09-create-patient"
    title = "Create Patient"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, "study_id")

        subject_id = state.subject_id
        if subject_id is not None:
            existing = ctx.client.get(f"/subjects/{subject_id}", quiet=True, script=self.name, step="Check existing patient")
            if existing.ok:
                ctx.sink.record_pass(self.name, "Patient", f"reusing subject {subject_id}")
            else:
                ctx.sink.info(f"Stored subject {subject_id} not found ({existing.status}); enrolling a new one")
                subject_id = None

        if subject_id is None:
            first_definition = state.event_definition_ids[0] if state.event_definition_ids else None
            payload = subject_payload(state.study_id, first_definition, ctx.settings.location, f"{int(time.time()):X}")
            created = ctx.client.post("/subjects", json=payload, script=self.name, step="Create patient")
            if not created.ok:
                return False
            subject_id = first_int(created.data, "studySubjectId", "subjectId", "id")
            if subject_id is None:
                ctx.sink.record_failure(
                    self.name,
                    "Extract subjectId",
                    "POST /subjects",
                    created.status,
                    "Response OK but could not extract subject ID from response",
                    response_body=created.raw,
                )
                return False
            ctx.store.update(subject_id=subject_id, study_subject_id=SUBJECT_LABEL)
            ctx.sink.record_pass(self.name, "Patient created", f'"{SUBJECT_LABEL}" (ID: {subject_id})')
            if first_definition is not None:
                ctx.sink.record_pass(self.name, "Screening visit", f"scheduled for {payload['enrollmentDate']}")

        events = SnapshotVerifier(ctx, script=self.name).list_events(subject_id)
        if events:
            event_ids = [e.event_id for e in events]
            ctx.store.update(study_event_ids=event_ids)
            ctx.sink.record_pass(
                self.name, "Patient events", f"{len(event_ids)} scheduled: [{', '.join(map(str, event_ids))}]"
            )
        return True
