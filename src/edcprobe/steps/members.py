# src/edcprobe/steps/members.py
"""Create the two non-admin organization members (coordinator, monitor)."""

from __future__ import annotations

from typing import Any

from edcprobe.client.normalize import as_list, first_int
from edcprobe.core.config import MemberSettings
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.organization import is_taken


def _find_member(existing: list[dict[str, Any]], member: MemberSettings) -> dict[str, Any] | None:
    for row in existing:
        username = row.get("username") or row.get("userName")
        if username == member.username or (member.email and row.get("email") == member.email):
            return row
    return None


class CreateMembers(Step):
    name = "01-create-members"
    title = "Create Organization Members"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, "org_id")

        members_path = f"/organizations/{state.org_id}/members"
        result = ctx.client.get(members_path, script=self.name, step="Fetch existing org members")
        existing = [row for row in as_list(result.data, "members", "rows") if isinstance(row, dict)]
        if existing:
            ctx.sink.info(f"Found {len(existing)} existing member(s)")

        outcomes = [
            self._ensure_member(ctx, members_path, existing, member, slot)
            for slot, member in enumerate(ctx.settings.members, start=1)
        ]
        return all(outcomes)

    def _ensure_member(
        self,
        ctx: HarnessContext,
        members_path: str,
        existing: list[dict[str, Any]],
        member: MemberSettings,
        slot: int,
    ) -> bool:
        label = f"Member {slot} ({member.role})"
        found = _find_member(existing, member)
        if found is not None:
            user_id = first_int(found, "userId", "id")
            ctx.store.update({f"member{slot}_user_id": user_id, f"member{slot}_username": member.username})
            ctx.sink.record_pass(self.name, label, f'found existing "{member.username}" (ID: {user_id})')
            return True

        payload = {
            "firstName": member.first_name,
            "lastName": member.last_name,
            "email": member.email,
            "username": member.username,
            "password": ctx.settings.admin_password,
            "role": member.role,
            "phone": f"+1-555-020{slot}",
        }
        result = ctx.client.post(members_path, json=payload, quiet=True, script=self.name, step=f"Create {label}")
        if result.ok:
            user_id = first_int(result.data, "userId", "id")
            ctx.store.update({f"member{slot}_user_id": user_id, f"member{slot}_username": member.username})
            ctx.sink.record_pass(self.name, label, f'created "{member.username}" (ID: {user_id})')
            return True

        if is_taken(result):
            # Username exists in another organization
            ctx.store.update({f"member{slot}_username": member.username})
            ctx.sink.warn(self.name, label, f'"{member.username}" exists globally; stored username for later use')
            return True

        ctx.sink.record_failure(
            self.name,
            f"Create {label}",
            f"POST {members_path}",
            result.status,
            result.error or f"HTTP {result.status}",
            request_body={**payload, "password": "***"},
            response_body=result.raw,
        )
        return False
