"""Typer CLI entry point for the resilience-engine."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from resilience_engine import __version__
from resilience_engine.api.server import run_server
from resilience_engine.config import Settings, format_validation_error
from resilience_engine.engine import ResilienceEngine
from resilience_engine.health.models import SystemHealth, SystemStatus
from resilience_engine.logging import configure_logging

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="resilience-engine",
    help="Retry, circuit breaking, error recovery and health monitoring.",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    from pydantic import ValidationError

    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


async def _run_all_checks(engine: ResilienceEngine) -> SystemHealth:
    """Run every registered check once, periodic ones included."""
    monitor = engine.monitor
    await asyncio.gather(*(monitor.run_check(name) for name in monitor.checks))
    return monitor.get_status()


_STATUS_STYLE = {
    SystemStatus.HEALTHY: "[green]HEALTHY[/green]",
    SystemStatus.DEGRADED: "[yellow]DEGRADED[/yellow]",
    SystemStatus.UNHEALTHY: "[red]UNHEALTHY[/red]",
}


def _display_health(snapshot: SystemHealth) -> None:
    table = Table(title="Resilience Engine Health", show_lines=True)
    table.add_column("Check", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Message")

    for name, result in snapshot.checks.items():
        table.add_row(
            name,
            "[green]OK[/green]" if result.healthy else "[red]FAIL[/red]",
            f"{result.latency * 1000:.0f} ms" if result.latency is not None else "-",
            result.message or "",
        )
    console.print(table)
    console.print(f"System status: {_STATUS_STYLE[snapshot.status]}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def health(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the health snapshot as JSON."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run the built-in health checks once and report the system status."""
    settings = _load_settings(config)
    configure_logging(
        level="DEBUG" if verbose else "WARNING",
        fmt=settings.logging.format,
        log_file=settings.logging.file,
    )
    engine = ResilienceEngine.from_settings(settings, install_default_checks=True)
    snapshot = asyncio.run(_run_all_checks(engine))

    if as_json:
        typer.echo(snapshot.model_dump_json(indent=2))
    else:
        _display_health(snapshot)

    if snapshot.status is SystemStatus.UNHEALTHY:
        raise typer.Exit(code=1)


@app.command()
def serve(
    port: Annotated[
        int | None,
        typer.Option("--port", help="Port to bind the health server."),
    ] = None,
    host: Annotated[
        str | None,
        typer.Option("--host", help="Host/interface to bind the health server."),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
) -> None:
    """Run the FastAPI health server."""
    api_overrides = {
        key: value for key, value in {"host": host, "port": port}.items() if value
    }
    overrides: dict[str, Any] = {"api": api_overrides} if api_overrides else {}
    settings = _load_settings(config, **overrides)
    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
    )
    logger.info("starting_health_server", host=settings.api.host, port=settings.api.port)
    run_server(settings)


@app.command()
def version() -> None:
    """Show the installed version."""
    console.print(f"[bold]resilience-engine[/bold] {__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
