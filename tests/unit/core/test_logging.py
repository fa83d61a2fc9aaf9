# tests/unit/core/test_logging.py
"""Tests for structured logging configuration."""

import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from edcprobe.core.logging import configure_logging


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_lines_carry_bound_step(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)
        logger = structlog.get_logger("edcprobe.test")

        with structlog.contextvars.bound_contextvars(step="06-create-study"):
            logger.info("request_completed", status_code=201)

        captured = capsys.readouterr()
        data = json.loads(captured.err.strip().splitlines()[-1])
        assert data["event"] == "request_completed"
        assert data["step"] == "06-create-study"
        assert data["status_code"] == 201
        assert data["level"] == "info"
        assert "_record" not in data
        assert captured.out == ""

    def test_console_output_is_not_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=False)

        structlog.get_logger("edcprobe.test").warning("token_refresh_failed", status=401)

        err = capsys.readouterr().err
        assert "token_refresh_failed" in err
        assert not err.strip().startswith("{")

    def test_stdlib_records_share_the_handler(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)

        logging.getLogger("edcprobe.plain").warning("plain record")

        data = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert data["event"] == "plain record"
        assert data["level"] == "warning"

    def test_level_filters_records(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="WARNING")

        structlog.get_logger("edcprobe.test").info("hidden")

        assert capsys.readouterr().err == ""

    def test_http_loggers_stay_at_warning_in_debug(self) -> None:
        configure_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
