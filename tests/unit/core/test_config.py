# tests/unit/core/test_config.py
"""Tests for harness settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from edcprobe.core.config import HarnessSettings, load_settings, resolve_config


class TestDefaults:
    def test_defaults_validate(self) -> None:
        settings = HarnessSettings()

        assert settings.base_url == "http://localhost:3000/api"
        assert len(settings.admin_emails) == 3
        assert [m.role for m in settings.members] == ["coordinator", "monitor"]
        assert settings.verification.max_events == 3
        assert settings.verification.expect_data_preserved_across_refresh is None

    def test_settings_are_frozen(self) -> None:
        settings = HarnessSettings()

        with pytest.raises(ValidationError):
            settings.base_url = "http://elsewhere/api"  # type: ignore[misc]


class TestValidation:
    def test_trailing_slash_is_stripped(self) -> None:
        assert HarnessSettings(base_url="http://edc.test/api/").base_url == "http://edc.test/api"

    def test_non_http_url_rejected(self) -> None:
        with pytest.raises(ValidationError, match="http"):
            HarnessSettings(base_url="ftp://edc.test")

    def test_comma_separated_emails(self) -> None:
        settings = HarnessSettings(admin_emails="a@example.com, b@example.com,")  # type: ignore[arg-type]

        assert settings.admin_emails == ["a@example.com", "b@example.com"]

    def test_empty_email_list_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HarnessSettings(admin_emails=[])

    def test_numeric_password_becomes_text(self) -> None:
        assert HarnessSettings(admin_password=123456).admin_password == "123456"  # type: ignore[arg-type]

    def test_exactly_two_members(self) -> None:
        one = [{"username": "u", "email": "u@example.com", "role": "monitor"}]

        with pytest.raises(ValidationError):
            HarnessSettings(members=one)  # type: ignore[arg-type]


class TestLoadSettings:
    def test_without_file_uses_defaults(self) -> None:
        assert load_settings() == HarnessSettings()

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml")

    def test_yaml_file(self, tmp_path: Path) -> None:
        config = tmp_path / "probe.yaml"
        config.write_text(
            "base_url: http://file.test/api\n"
            "timeout_seconds: 5\n"
            "verification:\n"
            "  max_events: 2\n"
            "  expect_data_preserved_across_refresh: false\n"
        )

        settings = load_settings(config)

        assert settings.base_url == "http://file.test/api"
        assert settings.timeout_seconds == 5
        assert settings.verification.max_events == 2
        assert settings.verification.expect_data_preserved_across_refresh is False

    def test_environment_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = tmp_path / "probe.yaml"
        config.write_text("base_url: http://file.test/api\n")
        monkeypatch.setenv("EDCPROBE_BASE_URL", "http://env.test/api")

        assert load_settings(config).base_url == "http://env.test/api"

    def test_nested_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EDCPROBE_VERIFICATION__MAX_EVENTS", "5")

        assert load_settings().verification.max_events == 5

    def test_env_var_expansion_in_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = tmp_path / "probe.yaml"
        config.write_text('admin_password: "${PROBE_TEST_PASSWORD}"\nlocation: "${PROBE_TEST_SITE:-Default Site}"\n')
        monkeypatch.setenv("PROBE_TEST_PASSWORD", "from-env")
        monkeypatch.delenv("PROBE_TEST_SITE", raising=False)

        settings = load_settings(config)

        assert settings.admin_password == "from-env"
        assert settings.location == "Default Site"

    def test_invalid_value_raises_validation_error(self, tmp_path: Path) -> None:
        config = tmp_path / "probe.yaml"
        config.write_text("timeout_seconds: -1\n")

        with pytest.raises(ValidationError):
            load_settings(config)


def test_resolve_config_masks_secrets() -> None:
    resolved = resolve_config(HarnessSettings(admin_password="hunter2"))

    assert resolved["admin_password"] == "***"
    assert resolved["base_url"] == "http://localhost:3000/api"
    assert "hunter2" not in str(resolved)


def test_resolve_config_leaves_empty_password_visible() -> None:
    assert resolve_config(HarnessSettings())["admin_password"] == ""
