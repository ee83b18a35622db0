"""Typer-based CLI for reading stored sessions."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from dbtrace.core.config import ConfigManager, DbTraceSettings
from dbtrace.sources import LogSource, create_log_source
from dbtrace.timings.models import Session
from dbtrace.utils.errors import ConfigurationError, LogSourceError
from dbtrace.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(help="Inspect profiled database sessions")
console = Console()

EXIT_NOT_FOUND = 1
EXIT_FAILURE = 2


@dataclass
class RuntimeContext:
    settings: DbTraceSettings
    source: LogSource


runtime: Optional[RuntimeContext] = None


def set_runtime(value: Optional[RuntimeContext]) -> None:
    global runtime
    runtime = value


def _require_runtime() -> RuntimeContext:
    if runtime is None:  # pragma: no cover - the callback always sets it
        raise RuntimeError("Runtime not initialised")
    return runtime


def _fail(message: str, code: int = EXIT_FAILURE) -> None:
    console.print(f"[bold red]{message}[/bold red]")
    raise typer.Exit(code=code)


def _print(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def _print_session(session: Optional[Session], what: str) -> None:
    if session is None:
        _fail(f"No session found for {what}", EXIT_NOT_FOUND)
        return
    _print(session.to_dict())


def _run(operation, *args: Any) -> Any:
    try:
        return operation(*args)
    except LogSourceError as exc:
        logger.error("log source read failed", extra={"reason": str(exc)})
        _fail(str(exc))
    except ValueError as exc:
        _fail(f"Invalid identifier: {exc}")


@app.callback()
def configure(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a YAML or TOML config file"),
) -> None:
    """Load configuration and open the configured log source."""

    if runtime is not None and config is None:
        return
    try:
        settings = ConfigManager(config).load()
        if settings.source is None:
            raise ConfigurationError("configuration has no 'source' section")
        if settings.logging.enabled:
            configure_logging(level=settings.logging.level, log_dir=settings.logging.log_dir)
        set_runtime(RuntimeContext(settings=settings, source=create_log_source(settings.source)))
    except ConfigurationError as exc:
        _fail(str(exc))


@app.command("latest")
def latest(
    top: int = typer.Option(20, "--top", "-n", help="Maximum number of sessions"),
    min_duration: int = typer.Option(0, "--min-duration", help="Minimum duration in milliseconds"),
) -> None:
    """List the most recent session summaries, newest first."""

    ctx = _require_runtime()
    sessions = _run(ctx.source.load_latest_session_summaries, top, min_duration)
    _print([session.to_record() for session in sessions])


@app.command("show")
def show(session_id: str) -> None:
    """Print a full session with its timing tree."""

    ctx = _require_runtime()
    _print_session(_run(ctx.source.load_session, session_id), f"id {session_id}")


@app.command("drill-down")
def drill_down(correlation_id: str) -> None:
    """Print the session started on behalf of a correlation id."""

    ctx = _require_runtime()
    _print_session(_run(ctx.source.drill_down_session, correlation_id), f"correlation id {correlation_id}")


@app.command("drill-up")
def drill_up(correlation_id: str) -> None:
    """Print the session whose timing issued a correlation id."""

    ctx = _require_runtime()
    _print_session(_run(ctx.source.drill_up_session, correlation_id), f"correlation id {correlation_id}")


__all__ = ["RuntimeContext", "app", "set_runtime"]
