# src/edcprobe/core/diagnostics.py
"""Pass/warn/fail console signals and the append-only failure log.

Every failure is printed and also appended as one JSON object per line to
the diagnostics file, so a full run leaves a machine-readable trail of
exactly what went wrong and with which request and response bodies.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
import typer

from edcprobe.contracts.enums import SignalLevel
from edcprobe.contracts.errors import DiagnosticsEntry

logger = structlog.get_logger(__name__)

_LABELS: dict[SignalLevel, tuple[str, str]] = {
    SignalLevel.PASS: ("[PASS]", typer.colors.GREEN),
    SignalLevel.WARN: ("[WARN]", typer.colors.YELLOW),
    SignalLevel.FAIL: ("[FAIL]", typer.colors.RED),
    SignalLevel.INFO: ("[INFO]", typer.colors.CYAN),
}

# Bodies larger than this are truncated in the console detail line only
_CONSOLE_BODY_LIMIT = 300


class DiagnosticsSink:
    """Console signal emitter backed by a JSONL failure log.

    Args:
        log_path: Path of the JSONL file. Its directory is created on first write.
        echo: Print signals to the console. Tests pass False.
    """

    def __init__(self, log_path: Path, *, echo: bool = True) -> None:
        self._log_path = log_path
        self._echo = echo
        self._counts: dict[SignalLevel, int] = dict.fromkeys(SignalLevel, 0)

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def counts(self) -> dict[SignalLevel, int]:
        """Signals emitted through this sink since construction."""
        return dict(self._counts)

    def _signal(self, level: SignalLevel, text: str) -> None:
        self._counts[level] += 1
        if not self._echo:
            return
        label, colour = _LABELS[level]
        typer.secho(f"  {label} ", fg=colour, bold=True, nl=False)
        typer.echo(text)

    def record_pass(self, script: str, step: str, detail: str | None = None) -> None:
        self._signal(SignalLevel.PASS, f"{step}{f' - {detail}' if detail else ''}")
        logger.debug("diagnostic_pass", script=script, step=step)

    def warn(self, script: str, step: str, message: str) -> None:
        self._signal(SignalLevel.WARN, f"{step}: {message}")
        logger.info("diagnostic_warning", script=script, step=step, message=message)

    def info(self, message: str) -> None:
        self._signal(SignalLevel.INFO, message)

    def header(self, title: str) -> None:
        if self._echo:
            rule = "=" * 64
            typer.secho(f"\n{rule}\n  {title}\n{rule}", fg=typer.colors.BRIGHT_WHITE, bold=True)

    def record_failure(
        self,
        script: str,
        step: str,
        endpoint: str,
        status: int | str,
        error: str,
        request_body: Any = None,
        response_body: Any = None,
    ) -> DiagnosticsEntry:
        """Print a failure and append it to the JSONL log.

        Returns:
            The entry as written
        """
        entry: DiagnosticsEntry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "script": script,
            "step": step,
            "endpoint": endpoint,
            "status": status,
            "error": error,
        }
        if request_body is not None:
            entry["requestBody"] = request_body
        if response_body is not None:
            entry["responseBody"] = response_body

        self._signal(SignalLevel.FAIL, f"{step} -> {endpoint} ({status})")
        if self._echo:
            typer.secho(f"         {error[:_CONSOLE_BODY_LIMIT]}", dim=True)

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        with self._log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=str) + "\n")

        logger.info("diagnostic_failure", script=script, step=step, endpoint=endpoint, status=status)
        return entry

    def read_entries(self) -> list[dict[str, Any]]:
        """Parse the log, one JSON object per non-blank line."""
        if not self._log_path.exists():
            return []
        entries = []
        for line in self._log_path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                entries.append(json.loads(line))
        return entries

    def failure_count(self) -> int:
        if not self._log_path.exists():
            return 0
        with self._log_path.open(encoding="utf-8") as handle:
            return sum(1 for line in handle if line.strip())

    def clear(self) -> None:
        """Truncate the log at the start of a full-suite run."""
        if self._log_path.exists():
            self._log_path.write_text("", encoding="utf-8")
