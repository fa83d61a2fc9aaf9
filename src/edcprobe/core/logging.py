# src/edcprobe/core/logging.py
"""Structured logging configuration for edcprobe.

Operational logs (requests, refreshes, step lifecycle) go to stderr through
structlog; stdout is left to the diagnostics sink's pass/warn/fail lines.
Each record carries the running step, bound by the orchestrator.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Every connection is logged at DEBUG
_HTTP_LOGGERS = ("httpx", "httpcore")


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib records through one stderr handler.

    Args:
        json_output: One JSON object per line instead of the console renderer
        level: Root log level name
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        renderers: list[Any] = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # The CLI reconfigures on every invocation
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=[ProcessorFormatter.remove_processors_meta, *renderers],
            foreign_pre_chain=shared_processors,
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
