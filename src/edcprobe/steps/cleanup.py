# src/edcprobe/steps/cleanup.py
"""Best-effort removal of entities left behind by earlier runs."""

from __future__ import annotations

from typing import Any

import structlog

from edcprobe.client.normalize import as_list, first_int
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.step import Step
from edcprobe.steps.fixtures import TEST_FORM_NAMES, TEST_STUDY_MARKER
from edcprobe.steps.organization import parse_login, username_from_email

logger = structlog.get_logger(__name__)

# Survive the state reset so the next steps can still authenticate
CREDENTIAL_FIELDS = (
    "org_id",
    "org_name",
    "admin_user_id",
    "admin_username",
    "admin_email",
    "access_token",
    "refresh_token",
)


def _name_of(row: dict[str, Any]) -> str:
    return str(row.get("name") or row.get("crfName") or "")


class Cleanup(Step):
    """Delete test subjects, rules, studies and templates for every admin account.

    Deletion order follows the backend's foreign keys: subjects before
    their study, rules before their template. Every call is quiet and
    the step always passes; leftovers only make later steps reuse more.
    """

    name = "00a-cleanup"
    title = "Cleanup Previous Test Data"

    def run(self, ctx: HarnessContext) -> bool:
        original = ctx.state
        deleted = 0
        for email in ctx.settings.admin_emails:
            username = username_from_email(email)
            login = parse_login(
                ctx.client.login(username, ctx.settings.admin_password, script=self.name, quiet=True)
            )
            if login is None or not login.access_token:
                ctx.sink.info(f"No account for {username}; nothing to clean")
                continue
            # A 401 mid-cleanup must re-login as this account, not the stored admin
            ctx.store.update(admin_username=username, access_token=login.access_token, refresh_token=login.refresh_token)
            count = self._clean_account(ctx)
            ctx.sink.info(f"{username}: removed {count} entit{'y' if count == 1 else 'ies'}")
            deleted += count

        # Credentials the run started without must not leak from the last cleaned account
        restored = {field: getattr(original, field) for field in CREDENTIAL_FIELDS}
        ctx.store.update(restored)
        ctx.store.reset(keep=[field for field, value in restored.items() if value is not None])
        ctx.sink.record_pass(self.name, "Cleanup", f"{deleted} entit{'y' if deleted == 1 else 'ies'} removed")
        logger.info("cleanup_finished", deleted=deleted)
        return True

    def _delete(self, ctx: HarnessContext, path: str) -> bool:
        return ctx.client.delete(path, quiet=True, script=self.name).ok

    def _clean_account(self, ctx: HarnessContext) -> int:
        deleted = 0
        client = ctx.client

        studies = as_list(
            client.get("/studies", params={"limit": 100}, quiet=True, script=self.name).data, "studies", "rows"
        )
        study_ids = [
            sid
            for sid in (first_int(s, "studyId", "id") for s in studies if TEST_STUDY_MARKER in _name_of(s))
            if sid is not None
        ]

        for study_id in study_ids:
            subjects = as_list(
                client.get(
                    "/subjects", params={"studyId": study_id, "limit": 100}, quiet=True, script=self.name
                ).data,
                "subjects",
                "rows",
            )
            for subject in subjects:
                subject_id = first_int(subject, "studySubjectId", "subjectId", "id")
                if subject_id is not None and self._delete(ctx, f"/subjects/{subject_id}"):
                    deleted += 1

        forms = as_list(client.get("/forms", quiet=True, script=self.name).data, "forms", "rows")
        form_ids = [
            fid
            for fid in (
                first_int(f, "crfId", "id") for f in forms if any(n in _name_of(f) for n in TEST_FORM_NAMES)
            )
            if fid is not None
        ]

        for crf_id in form_ids:
            rules = as_list(
                client.get(f"/validation-rules/crf/{crf_id}", quiet=True, script=self.name).data, "rules", "rows"
            )
            for rule in rules:
                rule_id = first_int(rule, "validationRuleId", "ruleId", "id")
                if rule_id is not None and self._delete(ctx, f"/validation-rules/{rule_id}"):
                    deleted += 1

        for study_id in study_ids:
            if self._delete(ctx, f"/studies/{study_id}"):
                deleted += 1
        for crf_id in form_ids:
            if self._delete(ctx, f"/forms/{crf_id}"):
                deleted += 1
        return deleted
