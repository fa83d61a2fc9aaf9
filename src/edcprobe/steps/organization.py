# src/edcprobe/steps/organization.py
"""Register the test organization and its admin, or adopt an existing one."""

from __future__ import annotations

import re
from typing import Any

import structlog
from pydantic import ValidationError

from edcprobe.contracts.models import LoginPayload
from edcprobe.contracts.results import ApiResult
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.step import Step

logger = structlog.get_logger(__name__)

_TAKEN = re.compile(r"already|exists|duplicate|taken", re.IGNORECASE)
_USERNAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_]")


def username_from_email(email: str) -> str:
    """``qa.admin+1@example.com`` -> ``qa_admin_1``."""
    return _USERNAME_UNSAFE.sub("_", email.split("@", 1)[0])


def is_taken(result: ApiResult) -> bool:
    """True when a failed create says the entity already exists."""
    return result.status == 409 or bool(_TAKEN.search(result.error or ""))


def parse_login(result: ApiResult) -> LoginPayload | None:
    """LoginPayload from a successful login or registration, else None."""
    if not result.ok or not isinstance(result.data, dict):
        return None
    try:
        return LoginPayload.model_validate(result.data)
    except ValidationError as exc:
        logger.warning("login_payload_unparseable", errors=exc.error_count())
        return None


def _registration_payload(ctx: HarnessContext, email: str, username: str, org_name: str) -> dict[str, Any]:
    return {
        "organizationDetails": {
            "name": org_name,
            "type": ctx.settings.org_type,
            "email": email,
            "phone": "+1-555-0100",
            "website": "https://edcprobe.example.com",
            "street": "123 Clinical Research Blvd",
            "city": "Boston",
            "state": "MA",
            "postalCode": "02115",
            "country": "US",
        },
        "adminDetails": {
            "firstName": "Probe",
            "lastName": "Admin",
            "email": email,
            "username": username,
            "phone": "+1-555-0101",
            "professionalTitle": "Principal Investigator",
            "credentials": "MD, PhD",
            "password": ctx.settings.admin_password,
        },
        "termsAccepted": {"acceptTerms": True, "acceptPrivacy": True, "acceptCompliance": True},
    }


class RegisterOrganization(Step):
    """Adopt the organization from an earlier run, else register a new one.

    The admin in state is tried first. Otherwise each configured email is
    registered in turn; a taken email is logged into, and adopted when the
    shared password works, so reruns never create a second organization.
    Only exhausting every email is recorded as a failure.
    """

    name = "00-register-organization"
    title = "Register Organization"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        if state.admin_username and self._adopt_existing(ctx, state.admin_username, state.admin_email):
            return True

        for counter, email in enumerate(ctx.settings.admin_emails, start=1):
            username = username_from_email(email)
            org_name = f"{ctx.settings.org_base_name} {counter}"
            ctx.sink.info(f'Attempting registration with {email} / {username} / "{org_name}"')

            result = ctx.client.post(
                "/organizations/register",
                json=_registration_payload(ctx, email, username, org_name),
                no_auth=True,
                quiet=True,
                script=self.name,
                step=f"Register org with {email}",
            )
            if result.ok:
                login = parse_login(result) or LoginPayload()
                ctx.store.update(
                    org_id=login.organization_id,
                    org_name=org_name,
                    admin_user_id=login.user_id,
                    admin_username=username,
                    admin_email=email,
                    access_token=login.access_token,
                    refresh_token=login.refresh_token,
                )
                ctx.sink.record_pass(self.name, "Organization registered", f'"{org_name}" (ID: {login.organization_id})')
                ctx.sink.record_pass(self.name, "Admin user created", f"{username} (ID: {login.user_id})")
                return True

            if not is_taken(result):
                ctx.sink.info(f"Registration failed ({result.status}), trying next email...")
                continue
            ctx.sink.info(f"{email} already exists, trying to log in...")
            if self._adopt_existing(ctx, username, email):
                return True

        ctx.sink.record_failure(
            self.name,
            "All emails exhausted",
            "POST /organizations/register",
            0,
            "Could not register or login with any of the configured emails",
        )
        return False

    def _adopt_existing(self, ctx: HarnessContext, username: str, email: str | None) -> bool:
        ctx.sink.info(f"Attempting login with existing account: {username}")
        login = parse_login(
            ctx.client.login(
                username,
                ctx.settings.admin_password,
                script=self.name,
                step=f"Login existing account ({username})",
                quiet=True,
            )
        )
        if login is None or not login.access_token:
            return False

        ctx.store.update(
            org_id=login.organization_id,
            org_name=login.organization_name,
            admin_user_id=login.user_id,
            admin_username=username,
            admin_email=email,
            access_token=login.access_token,
            refresh_token=login.refresh_token,
        )
        ctx.sink.record_pass(self.name, "Logged into existing account", f"{username} (userId: {login.user_id})")
        if login.organization_id is not None:
            ctx.sink.record_pass(
                self.name, "Organization", f"{login.organization_name} (ID: {login.organization_id})"
            )
        return True
