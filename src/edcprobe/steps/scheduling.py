# src/edcprobe/steps/scheduling.py
"""Schedule whichever study visits a subject does not have yet."""

from __future__ import annotations

from collections.abc import Sequence

from edcprobe.client.normalize import first_int
from edcprobe.contracts.models import ScheduledEvent
from edcprobe.engine.context import HarnessContext
from edcprobe.steps.fixtures import EVENT_DEFINITIONS, days_from_now
from edcprobe.verification.integrity import SnapshotVerifier

SCHEDULED_VISIT_LIMIT = 3


def ensure_visits_scheduled(
    ctx: HarnessContext,
    script: str,
    subject_id: int,
    definition_ids: Sequence[int],
) -> tuple[list[ScheduledEvent], bool]:
    """Schedule each of the first visit definitions the subject lacks.

    Visits are offset from today by their schedule day. The refreshed list
    of event ids is persisted as ``study_event_ids``.

    Returns:
        (events after scheduling, True if every schedule call succeeded)
    """
    verifier = SnapshotVerifier(ctx, script=script)
    events = verifier.list_events(subject_id) or []
    scheduled = {e.definition_id for e in events}

    ok = True
    attempted = 0
    for index, definition_id in enumerate(definition_ids[:SCHEDULED_VISIT_LIMIT]):
        label = EVENT_DEFINITIONS[index][0] if index < len(EVENT_DEFINITIONS) else f"Visit {index + 1}"
        if definition_id in scheduled:
            continue
        attempted += 1
        offset = EVENT_DEFINITIONS[index][2] if index < len(EVENT_DEFINITIONS) else 0
        result = ctx.client.post(
            "/events/schedule",
            json={
                "studySubjectId": subject_id,
                "studyEventDefinitionId": definition_id,
                "startDate": days_from_now(offset),
                "location": ctx.settings.location,
            },
            script=script,
            step=f"Schedule {label}",
        )
        if result.ok:
            event_id = first_int(result.data, "studyEventId", "id")
            ctx.sink.record_pass(script, f"Schedule {label}", f"study_event ID: {event_id}")
        else:
            ok = False

    if attempted:
        events = verifier.list_events(subject_id) or events
    else:
        ctx.sink.record_pass(script, "Visits", f"patient already has {len(events)} visit(s) scheduled")

    if events:
        ctx.store.update(study_event_ids=[e.event_id for e in events])
    return events, ok
