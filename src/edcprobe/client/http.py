# src/edcprobe/client/http.py
"""Authenticated HTTP client for the EDC backend.

Wraps a synchronous httpx.Client and adds what every step needs:

- the stored bearer token on each request, unless the caller sends an
  explicit empty ``Authorization`` header (``no_auth=True``)
- one transparent re-login on 401, guarded so that at most one refresh is
  ever in flight and each call is retried at most once
- a uniform ApiResult for every outcome; network errors and timeouts
  become ``status=0`` results instead of exceptions
- a diagnostics entry for every failed call unless ``quiet=True``
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from edcprobe.client.normalize import error_message, normalize_body
from edcprobe.contracts.enums import RefreshState
from edcprobe.contracts.models import LoginPayload
from edcprobe.contracts.results import ApiResult
from edcprobe.core.config import HarnessSettings
from edcprobe.core.diagnostics import DiagnosticsSink
from edcprobe.core.state import StateStore

logger = structlog.get_logger(__name__)

LOGIN_PATH = "/auth/login"


class AuthenticatedClient:
    """HTTP client that injects, refreshes and persists the admin token.

    Args:
        settings: Harness settings (base URL, timeout, admin password)
        store: State store holding the current tokens and admin username
        sink: Diagnostics sink that receives failed calls
        transport: Optional httpx transport, used by tests

    Example:
        with AuthenticatedClient(settings, store, sink) as client:
            result = client.get("/studies/12", script="06-create-study", step="Fetch study")
            if result.ok:
                print(result.data["name"])
    """

    def __init__(
        self,
        settings: HarnessSettings,
        store: StateStore,
        sink: DiagnosticsSink,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._sink = sink
        self._base_url = settings.base_url
        self._refresh_state = RefreshState.IDLE
        self._client = httpx.Client(
            timeout=settings.timeout_seconds,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

    @property
    def refresh_state(self) -> RefreshState:
        return self._refresh_state

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AuthenticatedClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _resolve_url(self, path: str) -> str:
        """Join base_url with path, handling slash combinations."""
        return f"{self._base_url.rstrip('/')}/{path.lstrip('/')}"

    @staticmethod
    def _parse_response_body(response: httpx.Response) -> Any:
        """Decode JSON bodies; anything else is returned as text, empty as None."""
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                # JSONDecodeError and UnicodeDecodeError
                text = response.content.decode("utf-8", "replace")
                logger.warning(
                    "json_parse_failed",
                    url=str(response.request.url),
                    status_code=response.status_code,
                    body_preview=text[:200],
                )
                return text
        return response.text

    @contextmanager
    def _refreshing(self) -> Iterator[None]:
        """Hold the single-flight refresh flag, always releasing it."""
        self._refresh_state = RefreshState.REFRESHING
        try:
            yield
        finally:
            self._refresh_state = RefreshState.IDLE

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        no_auth: bool = False,
    ) -> ApiResult:
        """Issue one request without refresh or reporting."""
        headers: dict[str, str] = {}
        if no_auth:
            # Explicit empty marker; token injection never overwrites it
            headers["Authorization"] = ""
        else:
            token = self._store.load().access_token
            if token:
                headers["Authorization"] = f"Bearer {token}"

        url = self._resolve_url(path)
        start = time.perf_counter()
        try:
            response = self._client.request(method, url, json=json, params=params, headers=headers)
        except httpx.HTTPError as exc:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.warning("request_failed", method=method, url=url, error=str(exc), latency_ms=round(latency_ms, 1))
            return ApiResult(ok=False, status=0, error=f"{type(exc).__name__}: {exc}")

        latency_ms = (time.perf_counter() - start) * 1000
        body = self._parse_response_body(response)
        payload, meta = normalize_body(body)
        ok = 200 <= response.status_code < 300
        logger.debug(
            "request_completed",
            method=method,
            url=url,
            status_code=response.status_code,
            latency_ms=round(latency_ms, 1),
        )
        return ApiResult(
            ok=ok,
            status=response.status_code,
            data=payload,
            meta=meta,
            error=None if ok else error_message(body),
            raw=body,
        )

    def _refresh(self) -> bool:
        """Log in again as the stored admin and persist the new tokens.

        Returns:
            True if a new access token was obtained and stored
        """
        username = self._store.load().admin_username
        if not username:
            logger.warning("token_refresh_skipped", reason="no admin username in state")
            return False

        with self._refreshing():
            logger.info("token_refresh_started", username=username)
            result = self._send(
                "POST",
                LOGIN_PATH,
                json={"username": username, "password": self._settings.admin_password},
                no_auth=True,
            )
            if not result.ok or not isinstance(result.data, dict):
                logger.warning("token_refresh_failed", status=result.status, error=result.error)
                return False
            try:
                login = LoginPayload.model_validate(result.data)
            except ValidationError as exc:
                logger.warning("token_refresh_unparseable", errors=exc.error_count())
                return False
            if not login.access_token:
                logger.warning("token_refresh_failed", status=result.status, error="no accessToken in login response")
                return False
            self._store.update(access_token=login.access_token, refresh_token=login.refresh_token)
            logger.info("token_refresh_succeeded", username=username)
            return True

    def call(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        no_auth: bool = False,
        quiet: bool = False,
        script: str = "",
        step: str = "",
    ) -> ApiResult:
        """Send a request, refreshing the token once on 401.

        Args:
            method: HTTP method
            path: Path relative to the configured base URL
            json: JSON request body
            params: Query parameters
            no_auth: Send an explicit empty Authorization header and never refresh
            quiet: Do not record a failure for a non-2xx outcome
            script: Step name used in diagnostics entries
            step: Sub-step label used in diagnostics entries

        Returns:
            ApiResult; this method does not raise for HTTP or network failures
        """
        method = method.upper()
        result = self._send(method, path, json=json, params=params, no_auth=no_auth)

        if result.status == 401 and not no_auth and self._refresh_state is RefreshState.IDLE:
            if self._refresh():
                # Retried exactly once; this send never re-enters the refresh branch
                result = self._send(method, path, json=json, params=params)

        if not result.ok and not quiet:
            endpoint = f"{method} {path}"
            self._sink.record_failure(
                script or "client",
                step or endpoint,
                endpoint,
                result.status,
                result.error or f"HTTP {result.status}",
                request_body=json,
                response_body=result.raw,
            )
        return result

    def get(self, path: str, **kwargs: Any) -> ApiResult:
        return self.call("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> ApiResult:
        return self.call("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> ApiResult:
        return self.call("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> ApiResult:
        return self.call("DELETE", path, **kwargs)

    def login(self, username: str, password: str, *, script: str = "", step: str = "", quiet: bool = False) -> ApiResult:
        """POST /auth/login without a token."""
        return self.call(
            "POST",
            LOGIN_PATH,
            json={"username": username, "password": password},
            no_auth=True,
            quiet=quiet,
            script=script,
            step=step or f"Login ({username})",
        )
