# src/edcprobe/core/config.py
"""Configuration schema and loading for edcprobe.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

_SECRET_KEYS = frozenset({"admin_password", "password"})

_DEFAULT_ADMIN_EMAILS = [
    "edcprobe.admin1@example.com",
    "edcprobe.admin2@example.com",
    "edcprobe.admin3@example.com",
]


class MemberSettings(BaseModel):
    """A non-admin organization member created by the suite."""

    model_config = {"frozen": True}

    username: str = Field(description="Login name of the member")
    email: str = Field(description="Email address of the member")
    role: str = Field(description="Organization role (coordinator, monitor, ...)")
    first_name: str = Field(default="Test", description="Given name")
    last_name: str = Field(default="Member", description="Family name")


def _default_members() -> list[MemberSettings]:
    return [
        MemberSettings(
            username="testcoordinator1",
            email="edcprobe.coordinator1@example.com",
            role="coordinator",
            first_name="Test",
            last_name="Coordinator",
        ),
        MemberSettings(
            username="testmonitor1",
            email="edcprobe.monitor1@example.com",
            role="monitor",
            first_name="Test",
            last_name="Monitor",
        ),
    ]


class VerificationSettings(BaseModel):
    """Tuning for the snapshot verification step."""

    model_config = {"frozen": True}

    max_events: int = Field(default=3, gt=0, description="Number of scheduled visits examined")
    roundtrip_keys: list[str] = Field(
        default_factory=lambda: ["assessment_date", "pain_level", "heart_rate"],
        description="Form data keys compared after a save and re-read",
    )
    expect_data_preserved_across_refresh: bool | None = Field(
        default=None,
        description=(
            "Whether saved form data must survive a snapshot refresh. None records the observation without asserting it."
        ),
    )


class HarnessSettings(BaseModel):
    """Top-level harness configuration."""

    model_config = {"frozen": True}

    base_url: str = Field(default="http://localhost:3000/api", description="Backend API root")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    admin_emails: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_ADMIN_EMAILS),
        min_length=1,
        description="Admin emails tried in order during registration",
    )
    admin_password: str = Field(default="", description="Password shared by the admin and member accounts")
    org_base_name: str = Field(default="EDC Probe Test Org", description="Organization name prefix")
    org_type: str = Field(default="research_institution", description="Organization type sent at registration")
    members: list[MemberSettings] = Field(default_factory=_default_members, min_length=2, max_length=2)
    location: str = Field(default="Boston General Hospital", description="Location used when scheduling visits")
    state_path: Path = Field(default=Path(".edcprobe/state/state.json"))
    diagnostics_path: Path = Field(default=Path(".edcprobe/logs/test-errors.jsonl"))
    verification: VerificationSettings = Field(default_factory=VerificationSettings)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("admin_emails", mode="before")
    @classmethod
    def _split_emails(cls, value: Any) -> Any:
        # Env overrides arrive as a comma-separated string
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("admin_password", mode="before")
    @classmethod
    def _password_as_text(cls, value: Any) -> Any:
        # Dynaconf parses numeric-looking env values into numbers
        if isinstance(value, int | float):
            return str(value)
        return value


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(item) for item in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path | None = None) -> HarnessSettings:
    """Load settings from an optional YAML/TOML file with environment overrides.

    Precedence, highest first:
    1. Environment variables (EDCPROBE_*, nested keys with ``__``)
    2. Config file
    3. Defaults from the Pydantic schema

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If an explicit config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="EDCPROBE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)
    return HarnessSettings(**raw_config)


def resolve_config(settings: HarnessSettings) -> dict[str, Any]:
    """Dump settings for display with secret values masked."""

    def _mask(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: ("***" if k in _SECRET_KEYS and v else _mask(v)) for k, v in value.items()}
        if isinstance(value, list):
            return [_mask(item) for item in value]
        return value

    dumped: dict[str, Any] = settings.model_dump(mode="json")
    return {k: ("***" if k in _SECRET_KEYS and v else _mask(v)) for k, v in dumped.items()}
