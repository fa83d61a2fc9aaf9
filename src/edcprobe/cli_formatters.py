# src/edcprobe/cli_formatters.py
"""CLI event formatter factories for suite execution output.

Provides factory functions that return event handler maps for console
(human-readable) and JSON (structured) output formats. Each factory
returns a dict mapping event types to handler callables, suitable for
subscribing to an EventBus.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import typer
from rich.console import Console
from rich.table import Table

from edcprobe.contracts.enums import StepStatus
from edcprobe.contracts.events import StepCompleted, StepStarted, SuiteSummary
from edcprobe.core.events import EventBusProtocol

_STATUS_STYLES: dict[StepStatus, tuple[str, str]] = {
    StepStatus.PASSED: ("✓", "green"),
    StepStatus.FAILED: ("✗", "red"),
    StepStatus.CRASHED: ("✗", "red bold"),
    StepStatus.SKIPPED: ("-", "dim"),
}


def _duration(seconds: float) -> str:
    return f"{seconds:.2f}s" if seconds < 60 else f"{seconds / 60:.1f}m"


def create_console_formatters(console: Console | None = None) -> dict[type, Callable[..., None]]:
    """Create console formatters for human-readable CLI output.

    Args:
        console: Rich console for the summary table. Defaults to stdout.
    """
    out = console or Console()

    def _format_step_started(event: StepStarted) -> None:
        typer.echo(f"[{event.index}/{event.total}] {event.name}...")

    def _format_step_completed(event: StepCompleted) -> None:
        symbol, _ = _STATUS_STYLES[event.status]
        error_info = f": {event.error_message}" if event.error_message else ""
        typer.echo(
            f"[{event.name}] {symbol} {event.status.value.upper()} in {_duration(event.duration_seconds)}{error_info}",
            err=event.status is StepStatus.CRASHED,
        )

    def _format_suite_summary(event: SuiteSummary) -> None:
        table = Table(title="Suite summary")
        table.add_column("Step")
        table.add_column("Status")
        for name, status in event.results:
            symbol, style = _STATUS_STYLES[status]
            table.add_row(name, f"[{style}]{symbol} {status.value}[/]")
        out.print(table)

        symbol = "✓" if event.ok else "✗"
        typer.echo(
            f"\n{symbol} Suite {'PASSED' if event.ok else 'FAILED'}: "
            f"✓{event.passed} passed | ✗{event.failed} failed | "
            f"{event.failure_log_entries} failure log entries | "
            f"{_duration(event.duration_seconds)} total"
        )

    return {
        StepStarted: _format_step_started,
        StepCompleted: _format_step_completed,
        SuiteSummary: _format_suite_summary,
    }


def create_json_formatters() -> dict[type, Callable[..., None]]:
    """Create JSON formatters for structured CLI output."""

    def _format_step_started_json(event: StepStarted) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "step_started",
                    "step": event.name,
                    "title": event.title,
                    "index": event.index,
                    "total": event.total,
                }
            )
        )

    def _format_step_completed_json(event: StepCompleted) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "step_completed",
                    "step": event.name,
                    "status": event.status.value,
                    "duration_seconds": event.duration_seconds,
                    "error": event.error_message,
                }
            )
        )

    def _format_suite_summary_json(event: SuiteSummary) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "suite_completed",
                    "status": "passed" if event.ok else "failed",
                    "results": {name: status.value for name, status in event.results},
                    "passed": event.passed,
                    "failed": event.failed,
                    "failure_log_entries": event.failure_log_entries,
                    "duration_seconds": event.duration_seconds,
                    "exit_code": 0 if event.ok else 1,
                }
            )
        )

    return {
        StepStarted: _format_step_started_json,
        StepCompleted: _format_step_completed_json,
        SuiteSummary: _format_suite_summary_json,
    }


def subscribe_formatters(
    event_bus: EventBusProtocol,
    formatters: dict[type, Callable[..., None]],
) -> None:
    """Subscribe all formatters to the event bus.

    Args:
        event_bus: The event bus to subscribe handlers to.
        formatters: Mapping from event type to handler callable.
    """
    for event_type, handler in formatters.items():
        event_bus.subscribe(event_type, handler)
