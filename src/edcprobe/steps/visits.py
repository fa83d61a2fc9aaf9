# src/edcprobe/steps/visits.py
"""End-to-end check of patient visits and their per-patient form snapshots.

Phases, in order:

1. schedule any missing visits
2. list the templates each visit expects
3. list each visit's snapshots and validate their field structure
4. save data into snapshots and read it back (round trip)
5. submit data missing a required field and confirm nothing changed
6. verify snapshot integrity against the templates
7. refresh, repair and re-verify
8. edge cases, reported as warnings only
9. verdict

Phases 1 and 3 through 7 decide the outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from edcprobe.client.normalize import as_list, first_int
from edcprobe.contracts.models import FormSnapshot, ScheduledEvent
from edcprobe.core.state import TestState
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import (
    NONEXISTENT_ID,
    is_lab_form,
    snapshot_general_data,
    snapshot_lab_data,
    today,
)
from edcprobe.steps.scheduling import ensure_visits_scheduled
from edcprobe.verification.content import validate_snapshot
from edcprobe.verification.integrity import SnapshotVerifier, VerificationRun
from edcprobe.verification.roundtrip import check_round_trip

logger = structlog.get_logger(__name__)

SAVE_LIMIT = 5
REQUIRED_FIELD = "assessment_date"


def snapshot_data_path(snapshot_id: int) -> str:
    return f"/events/patient-form/{snapshot_id}/data"


@dataclass
class SavedSnapshot:
    event_id: int
    snapshot: FormSnapshot
    written: dict[str, Any]


@dataclass
class VisitCheck:
    """Per-phase verdicts collected while the step runs."""

    scheduled: bool = True
    content: bool = True
    round_trip: bool = True
    required_rejected: bool = True
    integrity: VerificationRun | None = None
    saved: list[SavedSnapshot] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        integrity_ok = self.integrity is not None and self.integrity.ok
        return self.scheduled and self.content and self.round_trip and self.required_rejected and integrity_ok

    def failed_phases(self) -> list[str]:
        failed = [
            name
            for name, passed in (
                ("scheduling", self.scheduled),
                ("content validation", self.content),
                ("data round trip", self.round_trip),
                ("required-field rejection", self.required_rejected),
            )
            if not passed
        ]
        if self.integrity is None or not self.integrity.ok:
            failed.append("snapshot integrity")
        return failed


class PatientVisitsForms(Step):
    name = "12-patient-visits-forms"
    title = "Patient Visits and Form Snapshots"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, "study_id", "subject_id")
        subject_id = state.subject_id
        verifier = SnapshotVerifier(ctx, script=self.name)
        check = VisitCheck()

        ctx.sink.info("Phase 1: verify and schedule visits")
        events, check.scheduled = ensure_visits_scheduled(ctx, self.name, subject_id, state.event_definition_ids or [])
        events = events[: ctx.settings.verification.max_events]
        if not events:
            ctx.sink.record_failure(
                self.name, "Visits", f"GET /events/subject/{subject_id}", 0, "Patient has no scheduled visits"
            )
            check.scheduled = False

        ctx.sink.info("Phase 2: templates expected per visit")
        for event in events:
            forms = verifier.list_visit_forms(event.event_id)
            if forms is None:
                continue
            if forms:
                required = sum(1 for f in forms if f.required)
                ctx.sink.record_pass(
                    self.name, f"Visit {event.event_id} templates", f"{len(forms)} assigned, {required} required"
                )
            else:
                ctx.sink.warn(self.name, f"Visit {event.event_id} templates", "no templates assigned")

        ctx.sink.info("Phase 3: snapshots and field structure")
        snapshots_by_event = self._list_snapshots(ctx, verifier, events)
        check.content = self._validate_content(ctx, snapshots_by_event)

        ctx.sink.info("Phase 4: save data and read it back")
        check.saved, saves_ok = self._save_data(ctx, snapshots_by_event)
        check.round_trip = self._verify_round_trip(ctx, verifier, check.saved) and saves_ok

        ctx.sink.info("Phase 5: required-field rejection")
        check.required_rejected = self._verify_required_rejection(ctx, verifier, check.saved)

        ctx.sink.info("Phases 6-7: integrity, refresh, repair and re-verify")
        check.integrity = verifier.run(subject_id, always_refresh=True)

        ctx.sink.info("Phase 8: edge cases")
        self._edge_cases(ctx, verifier, state, check)

        ctx.sink.info("Phase 9: verdict")
        if check.ok:
            ctx.sink.record_pass(self.name, "Patient visits and snapshots", "all phases passed")
        else:
            ctx.sink.info(f"Failed phases: {', '.join(check.failed_phases())}")
        logger.info("visit_check_finished", subject_id=subject_id, ok=check.ok, failed=check.failed_phases())
        return check.ok

    # === Phase 3 ===

    def _list_snapshots(
        self, ctx: HarnessContext, verifier: SnapshotVerifier, events: list[ScheduledEvent]
    ) -> dict[int, list[FormSnapshot]]:
        by_event: dict[int, list[FormSnapshot]] = {}
        for event in events:
            snapshots = verifier.list_snapshots(event.event_id)
            if snapshots is None:
                continue
            by_event[event.event_id] = snapshots
            ctx.sink.record_pass(self.name, f"Visit {event.event_id} snapshots", f"{len(snapshots)} found")

        snapshot_ids = [s.snapshot_id for snapshots in by_event.values() for s in snapshots]
        if snapshot_ids:
            ctx.store.update(snapshot_ids=snapshot_ids)
        return by_event

    def _validate_content(self, ctx: HarnessContext, by_event: dict[int, list[FormSnapshot]]) -> bool:
        checked = 0
        ok = True
        for event_id, snapshots in by_event.items():
            for snapshot in snapshots:
                checked += 1
                for violation in validate_snapshot(snapshot):
                    ok = False
                    ctx.sink.record_failure(
                        self.name,
                        "Snapshot field structure",
                        f"GET /events/instance/{event_id}/form-snapshots",
                        0,
                        f"snapshot {violation.snapshot_id}: {violation.describe()}",
                    )
        if ok and checked:
            ctx.sink.record_pass(self.name, "Snapshot field structure", f"{checked} snapshot(s) well-formed")
        return ok

    # === Phase 4 ===

    def _save_data(
        self, ctx: HarnessContext, by_event: dict[int, list[FormSnapshot]]
    ) -> tuple[list[SavedSnapshot], bool]:
        saved: list[SavedSnapshot] = []
        ok = True
        candidates = [
            (event_id, s) for event_id, snapshots in by_event.items() for s in snapshots if not (s.is_locked or s.is_frozen)
        ]
        for event_id, snapshot in candidates[:SAVE_LIMIT]:
            written = snapshot_lab_data() if is_lab_form(snapshot.form_name) else snapshot_general_data()
            label = f'Save data to "{snapshot.form_name or snapshot.snapshot_id}"'
            result = ctx.client.put(
                snapshot_data_path(snapshot.snapshot_id), json={"formData": written}, script=self.name, step=label
            )
            if result.ok:
                saved.append(SavedSnapshot(event_id, snapshot, written))
                ctx.sink.record_pass(self.name, label, f"snapshot {snapshot.snapshot_id}")
            else:
                ok = False
        if not candidates:
            ctx.sink.info("No editable snapshots; nothing saved")
        return saved, ok

    @staticmethod
    def _find(snapshots: list[FormSnapshot] | None, snapshot_id: int) -> FormSnapshot | None:
        return next((s for s in snapshots or [] if s.snapshot_id == snapshot_id), None)

    @staticmethod
    def _round_trip_target(saved: list[SavedSnapshot]) -> SavedSnapshot | None:
        # General data carries the configured comparison keys
        candidates = [s for s in saved if not is_lab_form(s.snapshot.form_name)] or saved
        return candidates[0] if candidates else None

    def _verify_round_trip(self, ctx: HarnessContext, verifier: SnapshotVerifier, saved: list[SavedSnapshot]) -> bool:
        target = self._round_trip_target(saved)
        if target is None:
            ctx.sink.info("Nothing saved; round trip not checked")
            return True

        stored = self._find(verifier.list_snapshots(target.event_id), target.snapshot.snapshot_id)
        endpoint = f"GET /events/instance/{target.event_id}/form-snapshots"
        if stored is None:
            ctx.sink.record_failure(
                self.name, "Data round trip", endpoint, 0, f"snapshot {target.snapshot.snapshot_id} not found on re-read"
            )
            return False

        keys = [k for k in ctx.settings.verification.roundtrip_keys if k in target.written] or None
        result = check_round_trip(target.written, stored.form_data, keys)
        if result.ok:
            ctx.sink.record_pass(self.name, "Data round trip", f"{len(result.keys)} key(s) match")
            return True
        ctx.sink.record_failure(
            self.name,
            "Data round trip",
            endpoint,
            0,
            f"snapshot {target.snapshot.snapshot_id}: {result.describe()}",
            request_body=target.written,
            response_body=stored.form_data,
        )
        return False

    # === Phase 5 ===

    def _verify_required_rejection(
        self, ctx: HarnessContext, verifier: SnapshotVerifier, saved: list[SavedSnapshot]
    ) -> bool:
        target = next((s for s in saved if REQUIRED_FIELD in s.written), None)
        if target is None:
            ctx.sink.info("No general snapshot saved; required-field rejection not checked")
            return True

        snapshot_id = target.snapshot.snapshot_id
        before = self._find(verifier.list_snapshots(target.event_id), snapshot_id)
        incomplete = {k: v for k, v in snapshot_general_data().items() if k != REQUIRED_FIELD}
        path = snapshot_data_path(snapshot_id)
        result = ctx.client.put(
            path, json={"formData": incomplete}, quiet=True, script=self.name, step="Save without required field"
        )
        after = self._find(verifier.list_snapshots(target.event_id), snapshot_id)

        ok = True
        if result.ok or not 400 <= result.status < 500:
            ok = False
            ctx.sink.record_failure(
                self.name,
                "Required-field rejection",
                f"PUT {path}",
                result.status,
                f"save without {REQUIRED_FIELD} was not rejected with a client error",
                request_body={"formData": incomplete},
                response_body=result.raw,
            )
        else:
            ctx.sink.record_pass(self.name, "Required-field rejection", f"rejected ({result.status})")

        if before is not None and after is not None:
            unchanged = check_round_trip(before.form_data, after.form_data)
            if unchanged.ok:
                ctx.sink.record_pass(self.name, "Rejected save left data unchanged")
            else:
                ok = False
                ctx.sink.record_failure(
                    self.name,
                    "Rejected save left data unchanged",
                    f"PUT {path}",
                    result.status,
                    f"stored data changed: {unchanged.describe()}",
                )
        return ok

    # === Phase 8 ===

    def _edge_cases(self, ctx: HarnessContext, verifier: SnapshotVerifier, state: TestState, check: VisitCheck) -> None:
        client = ctx.client

        missing = client.put(
            snapshot_data_path(NONEXISTENT_ID),
            json={"formData": {"test": "value"}},
            quiet=True,
            script=self.name,
            step="Save to non-existent snapshot",
        )
        self._expect(ctx, "Save to non-existent snapshot", rejected=not missing.ok, status=missing.status)

        current = self._current_snapshots(check)
        if current:
            _, first = current[0]
            empty = client.put(
                snapshot_data_path(first.snapshot_id),
                json={"formData": {}},
                quiet=True,
                script=self.name,
                step="Empty save",
            )
            ctx.sink.info(f"Empty save to snapshot {first.snapshot_id}: {'accepted' if empty.ok else empty.status}")

        self._unscheduled_visit(ctx, verifier, state)

        unknown = client.get(
            f"/events/instance/{NONEXISTENT_ID}/visit-forms", quiet=True, script=self.name, step="Visit forms for unknown visit"
        )
        self._expect(
            ctx,
            "Visit forms for unknown visit",
            rejected=not unknown.ok or not as_list(unknown.data, "forms", "rows"),
            status=unknown.status,
        )

        if check.saved:
            target = check.saved[0]
            refetched = self._find(verifier.list_snapshots(target.event_id), target.snapshot.snapshot_id)
            if refetched is not None and refetched.form_data:
                ctx.sink.record_pass(self.name, "Re-fetch saved data", f"{len(refetched.form_data)} key(s) present")
            else:
                ctx.sink.warn(
                    self.name,
                    "Re-fetch saved data",
                    "snapshot formData empty after refresh and empty save",
                )

    def _expect(self, ctx: HarnessContext, label: str, *, rejected: bool, status: int) -> None:
        if rejected:
            ctx.sink.record_pass(self.name, label, f"rejected ({status})")
        else:
            ctx.sink.warn(self.name, label, f"accepted ({status}); expected rejection")

    @staticmethod
    def _current_snapshots(check: VisitCheck) -> list[tuple[int, FormSnapshot]]:
        run = check.integrity
        if run is None or run.final is None:
            return []
        return [(g.event_id, s) for g in run.final.graphs for s in g.snapshots]

    def _unscheduled_visit(self, ctx: HarnessContext, verifier: SnapshotVerifier, state: TestState) -> None:
        label = "Unscheduled visit"
        existing = state.unscheduled_event_ids or []
        if existing:
            event_id = existing[0]
            ctx.sink.info(f"Reusing unscheduled visit {event_id}")
        else:
            definitions = state.event_definition_ids or []
            if not definitions:
                ctx.sink.warn(self.name, label, "no visit definitions in state; skipped")
                return
            result = ctx.client.post(
                "/events/unscheduled",
                json={
                    "studySubjectId": state.subject_id,
                    "studyEventDefinitionId": definitions[-1],
                    "startDate": today(),
                    "location": "Emergency Room",
                    "reason": "Adverse event follow-up",
                },
                quiet=True,
                script=self.name,
                step="Create unscheduled visit",
            )
            event_id = first_int(result.data, "studyEventId", "id") if result.ok else None
            if event_id is None:
                ctx.sink.warn(self.name, label, f"could not be created ({result.status}): {result.error}")
                return
            ctx.store.update(unscheduled_event_ids=[event_id])
            ctx.sink.record_pass(self.name, label, f"created (study_event ID: {event_id})")

        snapshots = verifier.list_snapshots(event_id)
        if snapshots:
            ctx.sink.record_pass(self.name, f"{label} snapshots", f"{len(snapshots)} found")
        else:
            ctx.sink.warn(self.name, f"{label} snapshots", "no snapshots for the unscheduled visit")
