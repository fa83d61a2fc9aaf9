# src/edcprobe/cli.py
"""edcprobe Command Line Interface.

Entry point for the edcprobe CLI tool.
"""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from edcprobe import __version__
from edcprobe.cli_formatters import create_console_formatters, create_json_formatters, subscribe_formatters
from edcprobe.contracts.enums import OutputFormat
from edcprobe.contracts.errors import StateFileError, StepNotFoundError
from edcprobe.core.config import HarnessSettings, load_settings, resolve_config
from edcprobe.core.diagnostics import DiagnosticsSink
from edcprobe.core.events import EventBus
from edcprobe.core.state import StateStore
from edcprobe.engine.context import HarnessContext
from edcprobe.engine.orchestrator import Orchestrator
from edcprobe.steps import default_steps
from edcprobe.verification.integrity import SnapshotVerifier

__all__ = [
    "app",
]

app = typer.Typer(
    name="edcprobe",
    help="edcprobe: live end-to-end checks for an EDC backend.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"edcprobe version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


def _format_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", padding=(0, 1)))


def _settings(ctx: typer.Context) -> HarnessSettings:
    """Load settings from the global --config path, exiting with a readable error."""
    config_path: Path | None = (ctx.obj or {}).get("config")
    try:
        return load_settings(config_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {config_path}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_error(
            title="File Not Found",
            message=f"Config file does not exist: {config_path}",
            hint="Check the path, or omit --config to use defaults and EDCPROBE_* variables.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must precede ValueError; ValidationError inherits from it
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_error(
            title="Configuration Validation Failed",
            message="Invalid harness settings",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None


def _context(ctx: typer.Context, output_format: OutputFormat = OutputFormat.CONSOLE) -> HarnessContext:
    settings = _settings(ctx)
    bus = EventBus()
    if output_format is OutputFormat.JSON:
        subscribe_formatters(bus, create_json_formatters())
    else:
        subscribe_formatters(bus, create_console_formatters())
    return HarnessContext.build(settings, echo=output_format is OutputFormat.CONSOLE, bus=bus)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML or TOML settings file.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """edcprobe: live end-to-end checks for an EDC backend."""
    from edcprobe.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )

    ctx.obj = {"config": config.expanduser() if config is not None else None}


@app.command()
def run(
    ctx: typer.Context,
    stop_on_failure: bool = typer.Option(
        False,
        "--stop-on-failure",
        "-x",
        help="Skip the remaining steps after the first failure.",
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.CONSOLE,
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Run the full suite in order.

    Clears the failure log first. Exits 0 only if every step passed.

    Examples:

        # Full run against the configured backend
        edcprobe run

        # Stop at the first failing step
        edcprobe --config probe.yaml run --stop-on-failure
    """
    with _context(ctx, output_format) as harness:
        try:
            result = Orchestrator(harness, default_steps()).run_all(stop_on_failure=stop_on_failure)
        except StateFileError as e:
            _format_error(title="State File Error", message=str(e), hint="Check permissions on the state directory.")
            raise typer.Exit(1) from None
    raise typer.Exit(result.exit_code)


@app.command()
def step(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Step name, e.g. 06-create-study."),
    output_format: OutputFormat = typer.Option(
        OutputFormat.CONSOLE,
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Run one step on its own, using state left by earlier runs."""
    with _context(ctx, output_format) as harness:
        try:
            outcome = Orchestrator(harness, default_steps()).run_one(name)
        except StepNotFoundError as e:
            _format_error(title="Unknown Step", message=str(e), details=e.available, hint="Run 'edcprobe steps'.")
            raise typer.Exit(1) from None
        except StateFileError as e:
            _format_error(title="State File Error", message=str(e), hint="Check permissions on the state directory.")
            raise typer.Exit(1) from None
    raise typer.Exit(0 if outcome.ok else 1)


@app.command("steps")
def list_steps() -> None:
    """List suite steps in execution order."""
    for index, s in enumerate(default_steps(), start=1):
        typer.echo(f"{index:>2}. {s.name:<28} {s.title}")


@app.command()
def verify(
    ctx: typer.Context,
    repair: bool = typer.Option(
        True,
        "--repair/--no-repair",
        help="Refresh and repair snapshots when the first comparison fails.",
    ),
) -> None:
    """Verify the stored patient's snapshots against the study templates.

    Exits 0 if the subject's snapshots are consistent (after repair, if enabled).
    """
    with _context(ctx) as harness:
        subject_id = harness.state.subject_id
        if subject_id is None:
            _format_error(
                title="No Patient",
                message="No subjectId in state.",
                hint="Run 'edcprobe step 09-create-patient' first.",
            )
            raise typer.Exit(1)
        try:
            verification = SnapshotVerifier(harness).run(subject_id, repair=repair)
        except StateFileError as e:
            _format_error(title="State File Error", message=str(e), hint="Check permissions on the state directory.")
            raise typer.Exit(1) from None

    phases = " -> ".join(p.value.upper() for p in verification.phases)
    typer.echo(f"\nPhases: {phases}")
    symbol = "✓" if verification.ok else "✗"
    typer.echo(f"{symbol} Snapshot integrity {verification.status.value.upper()}")
    if verification.error:
        typer.echo(f"  {verification.error}", err=True)
    raise typer.Exit(0 if verification.ok else 1)


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Delete the state file so the next run starts from scratch."""
    store = StateStore(_settings(ctx).state_path)
    if not store.path.exists():
        typer.echo(f"No state file at {store.path}")
        return
    if not yes and not typer.confirm(f"Delete {store.path}?"):
        typer.echo("Aborted.")
        raise typer.Exit(1)
    try:
        store.reset()
    except StateFileError as e:
        _format_error(title="State File Error", message=str(e))
        raise typer.Exit(1) from None
    typer.echo(f"Deleted {store.path}")


@app.command()
def errors(
    ctx: typer.Context,
    limit: int = typer.Option(
        10,
        "--limit",
        "-n",
        help="Number of most recent entries to show.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output entries as JSON lines.",
    ),
) -> None:
    """Summarise the failure log of the last run."""
    sink = DiagnosticsSink(_settings(ctx).diagnostics_path, echo=False)
    entries = sink.read_entries()
    if json_output:
        for entry in entries[-limit:]:
            typer.echo(json.dumps(entry))
        return
    if not entries:
        typer.echo(f"No failures recorded in {sink.log_path}")
        return

    typer.echo(f"{len(entries)} failure(s) in {sink.log_path}\n")
    for script, count in Counter(str(e.get("script")) for e in entries).most_common():
        typer.echo(f"  {script:<28} {count}")
    typer.echo("")
    for entry in entries[-limit:]:
        typer.echo(f"[{entry.get('script')}] {entry.get('step')} -> {entry.get('endpoint')} ({entry.get('status')})")
        typer.echo(f"    {str(entry.get('error', ''))[:200]}")


@app.command("show-config")
def show_config(ctx: typer.Context) -> None:
    """Print the resolved settings with secrets masked."""
    typer.echo(json.dumps(resolve_config(_settings(ctx)), indent=2))


if __name__ == "__main__":
    app()
