"""
Typer CLI for the metadata synchronizer.

Selects the operating mode, loads configuration and runs the service.
"""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from metasync import __version__
from metasync.config import load_settings
from metasync.models import Mode
from metasync.service import run_service
from metasync.utils.logging import configure_logging, get_logger

app = typer.Typer(
    name="metasync",
    help="Keep a search index synchronized with AVU metadata",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"App-Version: {__version__}")
        raise typer.Exit(0)


@app.command()
def main(
    mode: Annotated[
        Mode | None,
        typer.Option(
            "--mode",
            "-m",
            help="One of full, periodic or incremental",
            case_sensitive=False,
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to the YAML configuration file",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Log level (overrides the config file)"),
    ] = None,
    debug_port: Annotated[
        int | None,
        typer.Option("--debug-port", help="Port for the metrics/debug server"),
    ] = None,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Print the version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """
    Run the synchronizer.

    full reindexes once and exits; periodic and incremental consume broker
    messages until interrupted.
    """
    if mode is None:
        err_console.print("[bold red]✗ --mode is required (full, periodic, incremental)[/bold red]")
        raise typer.Exit(1)

    if config is None:
        err_console.print("[bold red]✗ --config is required[/bold red]")
        raise typer.Exit(1)

    try:
        settings = load_settings(config, log_level=log_level, debug_port=debug_port)
    except (OSError, ValueError, ValidationError, yaml.YAMLError) as e:
        err_console.print(
            f"[bold red]✗ Invalid configuration in {config}:[/bold red] {escape(str(e))}"
        )
        raise typer.Exit(1) from None

    configure_logging(level=settings.log_level, json_format=settings.log_json, mode=mode.value)
    logger = get_logger(__name__)

    try:
        result = asyncio.run(run_service(settings, mode))
    except Exception as e:
        logger.error(f"metasync {mode.value} run failed: {e}", exc_info=True)
        raise typer.Exit(1) from None

    if result is not None:
        logger.info(f"Full reindex complete: {result.purged} purged, {result.indexed} indexed")
