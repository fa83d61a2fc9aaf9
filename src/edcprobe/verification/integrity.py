# src/edcprobe/verification/integrity.py
"""Snapshot consistency verification and repair.

Templates assigned to a visit are the source of truth; each patient carries
its own frozen copy (snapshot) of every template for every scheduled visit.
The verifier checks that correspondence and, when it does not hold, drives
the backend's repair endpoints and checks again:

    DISCOVER -> COMPARE -> (VALID | REFRESH -> REPAIR_MISSING -> REVERIFY) -> REPORT

A run ends VALID or FAILED. Refresh or repair endpoint errors, and a
mismatch that survives repair, are terminal failures; nothing is retried.

Comparison is multiset-based: per visit, every expected template id must be
matched by exactly one snapshot. A missing snapshot is counted as missing,
and a second snapshot for the same template is counted as extra.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from edcprobe.client.normalize import parse_rows
from edcprobe.contracts.enums import IntegrityStatus, VerificationPhase
from edcprobe.contracts.errors import RepairFailedError
from edcprobe.contracts.models import (
    FormSnapshot,
    RefreshOutcome,
    RepairOutcome,
    ScheduledEvent,
    ServerIntegrityReport,
    VisitForm,
)
from edcprobe.verification.roundtrip import check_round_trip

if TYPE_CHECKING:
    from edcprobe.engine.context import HarnessContext

logger = structlog.get_logger(__name__)

DEFAULT_SCRIPT = "12-patient-visits-forms"

SnapshotKey = tuple[int, int | None]


@dataclass
class EventGraph:
    """Expected templates and actual snapshots discovered for one visit."""

    event_id: int
    definition_id: int | None = None
    name: str | None = None
    expected_crf_ids: list[int] = field(default_factory=list)
    snapshots: list[FormSnapshot] = field(default_factory=list)
    fetch_error: str | None = None

    @property
    def actual_crf_ids(self) -> list[int | None]:
        return [s.crf_id for s in self.snapshots]


@dataclass
class EventComparison:
    """Difference between the assigned templates and the snapshots of one visit.

    Attributes:
        missing: template id -> number of snapshots short
        extra: template id -> number of surplus snapshots (duplicates or orphans)
    """

    event_id: int
    expected: int
    actual: int
    missing: dict[int | None, int] = field(default_factory=dict)
    extra: dict[int | None, int] = field(default_factory=dict)
    expected_by_template: dict[int | None, int] = field(default_factory=dict)
    actual_by_template: dict[int | None, int] = field(default_factory=dict)
    fetch_error: str | None = None

    @property
    def match(self) -> bool:
        return self.fetch_error is None and not self.missing and not self.extra


@dataclass
class IntegrityReport:
    """Local comparison across all discovered visits."""

    comparisons: list[EventComparison] = field(default_factory=list)
    discovery_error: str | None = None

    @property
    def events_checked(self) -> int:
        return len(self.comparisons)

    @property
    def forms_checked(self) -> int:
        return sum(c.expected for c in self.comparisons)

    @property
    def snapshots_found(self) -> int:
        return sum(c.actual for c in self.comparisons)

    @property
    def missing(self) -> int:
        return sum(sum(c.missing.values()) for c in self.comparisons)

    @property
    def extra(self) -> int:
        return sum(sum(c.extra.values()) for c in self.comparisons)

    @property
    def valid(self) -> bool:
        return self.discovery_error is None and all(c.match for c in self.comparisons)

    def mismatch_lines(self) -> list[str]:
        """One line per missing or surplus snapshot, naming visit and template."""
        lines = []
        if self.discovery_error:
            lines.append(f"discovery failed: {self.discovery_error}")
        for c in self.comparisons:
            if c.fetch_error:
                lines.append(f"event {c.event_id}: could not be inspected ({c.fetch_error})")
            for crf_id in sorted({*c.missing, *c.extra}, key=str):
                lines.append(
                    f"event {c.event_id} template {crf_id}: expected "
                    f"{c.expected_by_template.get(crf_id, 0)} snapshot(s), "
                    f"found {c.actual_by_template.get(crf_id, 0)}"
                )
        return lines


def compare_event_graphs(graphs: Sequence[EventGraph], discovery_error: str | None = None) -> IntegrityReport:
    """Compute the per-visit difference for every discovered visit.

    Each assigned template is expected once, however many rows the
    visit-forms listing returns for it. Snapshots stay a multiset so a
    duplicate snapshot is surplus.
    """
    report = IntegrityReport(discovery_error=discovery_error)
    for graph in graphs:
        expected = Counter(dict.fromkeys(graph.expected_crf_ids, 1))
        actual = Counter(graph.actual_crf_ids)
        report.comparisons.append(
            EventComparison(
                event_id=graph.event_id,
                expected=len(expected),
                actual=len(graph.snapshots),
                missing=dict(expected - actual),
                extra=dict(actual - expected),
                expected_by_template=dict(expected),
                actual_by_template=dict(actual),
                fetch_error=graph.fetch_error,
            )
        )
    return report


@dataclass
class IntegrityCheck:
    """Local comparison plus the backend's own verdict."""

    local: IntegrityReport
    graphs: list[EventGraph] = field(default_factory=list)
    server: ServerIntegrityReport | None = None
    server_error: str | None = None

    @property
    def valid(self) -> bool:
        return self.local.valid and self.server is not None and self.server.is_valid


@dataclass
class VerificationRun:
    """Trace and verdict of one pass through the verification state machine."""

    subject_id: int
    phases: list[VerificationPhase] = field(default_factory=list)
    initial: IntegrityCheck | None = None
    final: IntegrityCheck | None = None
    refresh: RefreshOutcome | None = None
    repair: RepairOutcome | None = None
    status: IntegrityStatus = IntegrityStatus.FAILED
    error: str | None = None
    data_preserved_across_refresh: bool | None = None
    lost_data: list[SnapshotKey] = field(default_factory=list)
    preservation_violated: bool = False

    @property
    def ok(self) -> bool:
        return self.status is IntegrityStatus.VALID and not self.preservation_violated


class SnapshotVerifier:
    """Discovers, compares and repairs a subject's snapshots.

    Args:
        ctx: Harness context providing the client, sink and settings
        script: Step name used for diagnostics entries

    Example:
        verifier = SnapshotVerifier(ctx)
        run = verifier.run(subject_id=41)
        if run.status is IntegrityStatus.VALID:
            ...
    """

    def __init__(self, ctx: HarnessContext, *, script: str = DEFAULT_SCRIPT) -> None:
        self._client = ctx.client
        self._sink = ctx.sink
        self._settings = ctx.settings.verification
        self._script = script

    # === Discovery ===

    def list_events(self, subject_id: int) -> list[ScheduledEvent] | None:
        """Scheduled visits of the subject, or None if they cannot be listed."""
        result = self._client.get(f"/events/subject/{subject_id}", script=self._script, step="List scheduled events")
        if not result.ok:
            return None
        try:
            return parse_rows(ScheduledEvent, result.data, "events", "rows")
        except ValidationError as exc:
            self._report_unparseable(f"GET /events/subject/{subject_id}", exc, result.raw)
            return None

    def list_visit_forms(self, event_id: int) -> list[VisitForm] | None:
        path = f"/events/instance/{event_id}/visit-forms"
        result = self._client.get(path, script=self._script, step=f"Visit forms for event {event_id}")
        if not result.ok:
            return None
        try:
            return parse_rows(VisitForm, result.data, "forms", "rows")
        except ValidationError as exc:
            self._report_unparseable(f"GET {path}", exc, result.raw)
            return None

    def list_snapshots(self, event_id: int) -> list[FormSnapshot] | None:
        path = f"/events/instance/{event_id}/form-snapshots"
        result = self._client.get(path, script=self._script, step=f"Form snapshots for event {event_id}")
        if not result.ok:
            return None
        try:
            return parse_rows(FormSnapshot, result.data, "snapshots", "rows")
        except ValidationError as exc:
            self._report_unparseable(f"GET {path}", exc, result.raw)
            return None

    def _report_unparseable(self, endpoint: str, exc: ValidationError, raw: Any) -> None:
        self._sink.record_failure(
            self._script,
            "Parse response",
            endpoint,
            0,
            f"Response does not match the expected shape: {exc.error_count()} error(s)",
            response_body=raw,
        )

    def discover(self, subject_id: int) -> tuple[list[EventGraph], str | None]:
        """Build the expected/actual graph for the first scheduled visits.

        Returns:
            (graphs, discovery_error). A visit whose forms or snapshots could
            not be fetched carries a ``fetch_error`` instead of aborting discovery.
        """
        events = self.list_events(subject_id)
        if events is None:
            return [], f"could not list events for subject {subject_id}"

        graphs = []
        for event in events[: self._settings.max_events]:
            graph = EventGraph(event_id=event.event_id, definition_id=event.definition_id, name=event.name)
            forms = self.list_visit_forms(event.event_id)
            snapshots = self.list_snapshots(event.event_id)
            if forms is None or snapshots is None:
                graph.fetch_error = "visit forms or snapshots unavailable"
            else:
                graph.expected_crf_ids = [f.crf_id for f in forms]
                graph.snapshots = snapshots
            graphs.append(graph)
        logger.info("snapshots_discovered", subject_id=subject_id, events=len(graphs))
        return graphs, None

    # === Comparison ===

    def fetch_server_report(self, subject_id: int) -> tuple[ServerIntegrityReport | None, str | None]:
        path = f"/events/verify/subject/{subject_id}"
        result = self._client.get(path, script=self._script, step="Server integrity report")
        if not result.ok or not isinstance(result.data, dict):
            return None, result.error or f"unexpected payload from GET {path}"
        try:
            return ServerIntegrityReport.model_validate(result.data), None
        except ValidationError as exc:
            self._report_unparseable(f"GET {path}", exc, result.raw)
            return None, "unparseable integrity report"

    def check(self, subject_id: int) -> IntegrityCheck:
        """Run discovery, the local comparison and the server report, reporting every mismatch."""
        graphs, discovery_error = self.discover(subject_id)
        local = compare_event_graphs(graphs, discovery_error)
        server, server_error = self.fetch_server_report(subject_id)
        check = IntegrityCheck(local=local, graphs=graphs, server=server, server_error=server_error)
        self._report_check(subject_id, check)
        return check

    def _report_check(self, subject_id: int, check: IntegrityCheck) -> None:
        local = check.local
        if local.valid:
            self._sink.record_pass(
                self._script,
                "Snapshot completeness",
                f"{local.events_checked} event(s), {local.forms_checked} template slot(s), "
                f"{local.snapshots_found} snapshot(s)",
            )
        else:
            for line in local.mismatch_lines():
                self._sink.record_failure(
                    self._script,
                    "Snapshot completeness",
                    f"subject {subject_id}",
                    0,
                    line,
                )

        server = check.server
        if server is None:
            # The client already recorded transport and HTTP failures
            return
        if server.is_valid:
            self._sink.record_pass(
                self._script,
                "Server integrity report",
                f"missing={server.missing or 0}, extra={server.extra or 0}",
            )
        else:
            self._sink.record_failure(
                self._script,
                "Server integrity report",
                f"GET /events/verify/subject/{subject_id}",
                200,
                f"Server reports mismatches: missing={server.missing}, extra={server.extra}",
                response_body={"mismatches": server.mismatches, "details": server.details},
            )

    # === Repair ===

    def refresh(self, subject_id: int) -> RefreshOutcome:
        """Rebuild every snapshot of the subject from current templates.

        Raises:
            RepairFailedError: If the endpoint does not succeed
        """
        result = self._client.post(
            f"/events/verify/subject/{subject_id}/refresh-snapshots",
            script=self._script,
            step="Refresh all snapshots",
        )
        if not result.ok:
            raise RepairFailedError(VerificationPhase.REFRESH.value, result.status, result.error or "")
        return RefreshOutcome.model_validate(result.data if isinstance(result.data, dict) else {})

    def repair(self, subject_id: int) -> RepairOutcome:
        """Create snapshots for every template slot that has none.

        Raises:
            RepairFailedError: If the endpoint does not succeed
        """
        result = self._client.post(
            f"/events/verify/subject/{subject_id}/repair",
            script=self._script,
            step="Repair missing snapshots",
        )
        if not result.ok:
            raise RepairFailedError(VerificationPhase.REPAIR_MISSING.value, result.status, result.error or "")
        return RepairOutcome.model_validate(result.data if isinstance(result.data, dict) else {})

    @staticmethod
    def _capture_form_data(graphs: Sequence[EventGraph]) -> dict[SnapshotKey, dict[str, Any]]:
        return {
            (graph.event_id, snapshot.crf_id): dict(snapshot.form_data)
            for graph in graphs
            for snapshot in graph.snapshots
            if snapshot.form_data
        }

    def _assess_preservation(self, run: VerificationRun, before: dict[SnapshotKey, dict[str, Any]]) -> None:
        """Record whether entered data survived the refresh and judge it against expectation."""
        if not before or run.final is None:
            run.data_preserved_across_refresh = None
            self._sink.info("No entered form data before refresh; data preservation not observed")
            return

        after = self._capture_form_data(run.final.graphs)
        run.lost_data = [key for key, data in before.items() if not check_round_trip(data, after.get(key, {})).ok]
        run.data_preserved_across_refresh = not run.lost_data
        logger.info(
            "refresh_data_preservation",
            subject_id=run.subject_id,
            preserved=run.data_preserved_across_refresh,
            lost=len(run.lost_data),
        )

        expected = self._settings.expect_data_preserved_across_refresh
        observation = (
            "form data preserved across refresh"
            if run.data_preserved_across_refresh
            else f"form data lost across refresh in {len(run.lost_data)} snapshot(s): "
            + ", ".join(f"event {e} template {c}" for e, c in run.lost_data)
        )
        if expected is None:
            if run.data_preserved_across_refresh:
                self._sink.record_pass(self._script, "Refresh data preservation", observation)
            else:
                self._sink.warn(self._script, "Refresh data preservation", observation)
        elif expected == run.data_preserved_across_refresh:
            self._sink.record_pass(self._script, "Refresh data preservation", observation)
        else:
            run.preservation_violated = True
            self._sink.record_failure(
                self._script,
                "Refresh data preservation",
                f"POST /events/verify/subject/{run.subject_id}/refresh-snapshots",
                0,
                f"expected data {'preserved' if expected else 'discarded'}, observed: {observation}",
            )

    def run_repair_cycle(self, subject_id: int, run: VerificationRun | None = None) -> VerificationRun:
        """REFRESH -> REPAIR_MISSING -> REVERIFY -> REPORT.

        Any endpoint failure or a mismatch after repair ends the run FAILED.
        """
        run = run or VerificationRun(subject_id=subject_id)
        before = self._capture_form_data(run.initial.graphs) if run.initial else {}
        try:
            run.phases.append(VerificationPhase.REFRESH)
            run.refresh = self.refresh(subject_id)
            self._sink.record_pass(
                self._script,
                "Refresh all snapshots",
                f"deleted {run.refresh.deleted}, created {run.refresh.refreshed}",
            )

            run.phases.append(VerificationPhase.REPAIR_MISSING)
            run.repair = self.repair(subject_id)
            self._sink.record_pass(self._script, "Repair missing snapshots", f"repaired {run.repair.repaired}")
            if run.repair.errors:
                self._sink.warn(self._script, "Repair missing snapshots", f"{len(run.repair.errors)} error(s) reported")
        except RepairFailedError as exc:
            run.error = str(exc)
            run.status = IntegrityStatus.FAILED
            run.phases.append(VerificationPhase.REPORT)
            self._sink.record_failure(
                self._script,
                "Refresh/repair",
                f"POST /events/verify/subject/{subject_id}",
                exc.status,
                f"{exc.phase} endpoint failed: {exc.message}",
            )
            logger.warning("snapshot_repair_failed", subject_id=subject_id, phase=exc.phase, status=exc.status)
            return run

        run.phases.append(VerificationPhase.REVERIFY)
        run.final = self.check(subject_id)
        self._assess_preservation(run, before)

        run.status = IntegrityStatus.VALID if run.final.valid else IntegrityStatus.FAILED
        if run.status is IntegrityStatus.FAILED:
            run.error = "integrity mismatch persists after refresh and repair"
            self._sink.record_failure(
                self._script,
                "Re-verify after repair",
                f"GET /events/verify/subject/{subject_id}",
                0,
                run.error,
            )
        run.phases.append(VerificationPhase.REPORT)
        logger.info("snapshot_verification_finished", subject_id=subject_id, status=run.status.value)
        return run

    def run(self, subject_id: int, *, repair: bool = True, always_refresh: bool = False) -> VerificationRun:
        """Run the full state machine for one subject.

        Args:
            subject_id: Subject whose snapshots are verified
            repair: Attempt refresh and repair when the first comparison fails
            always_refresh: Exercise refresh and repair even when the first
                comparison is valid
        """
        run = VerificationRun(subject_id=subject_id)
        run.phases.extend([VerificationPhase.DISCOVER, VerificationPhase.COMPARE])
        run.initial = self.check(subject_id)

        if always_refresh:
            return self.run_repair_cycle(subject_id, run)

        if run.initial.valid:
            run.final = run.initial
            run.status = IntegrityStatus.VALID
            run.phases.extend([VerificationPhase.VALID, VerificationPhase.REPORT])
            return run

        if not repair:
            run.final = run.initial
            run.status = IntegrityStatus.FAILED
            run.error = "integrity mismatch"
            run.phases.append(VerificationPhase.REPORT)
            return run

        return self.run_repair_cycle(subject_id, run)
