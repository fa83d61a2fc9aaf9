# src/edcprobe/steps/login.py
"""Authenticate as the admin and store fresh tokens."""

from __future__ import annotations

from edcprobe.client.http import LOGIN_PATH
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.preconditions import require
from edcprobe.engine.step import Step
from edcprobe.steps.organization import parse_login


class LoginAdmin(Step):
    """Log in even when registration already returned a token, so the token is fresh."""

    name = "02-login-admin"
    title = "Login as Admin"

    def run(self, ctx: HarnessContext) -> bool:
        state = ctx.state
        require(state, "admin_username")
        ctx.sink.info(f"Logging in as: {state.admin_username}")

        result = ctx.client.login(state.admin_username, ctx.settings.admin_password, script=self.name, step="Admin login")
        if not result.ok:
            return False

        login = parse_login(result)
        if login is None or not login.access_token:
            ctx.sink.record_failure(
                self.name,
                "Extract token",
                f"POST {LOGIN_PATH}",
                result.status,
                "Response OK but no accessToken found in body",
                response_body=result.raw,
            )
            return False

        user = result.data.get("user") if isinstance(result.data, dict) else None
        ctx.store.update(
            access_token=login.access_token,
            refresh_token=login.refresh_token,
            admin_user_id=login.user_id,
            admin_email=state.admin_email or (user.get("email") if isinstance(user, dict) else None),
        )
        ctx.sink.record_pass(self.name, "Admin login", f"{state.admin_username} (userId: {login.user_id})")
        ctx.sink.record_pass(self.name, "Token", f"expires in {login.expires_in if login.expires_in is not None else '?'}s")
        return True
