#!/usr/bin/env python3
"""Main CLI entry point for the response archiver using Typer."""

import asyncio
import sys
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

import typer

from .. import __version__
from ..archivers.images import create_image_archiver_profile
from ..errors import ConfigurationError
from ..persistence.archive_store import ArchiveStore
from ..utils.log_setup import configure_logging
from .config import ArchiverSettings, load_settings, print_configuration
from .runner import ArchiverRunner, ExitCode


app = typer.Typer(
    name="archiver",
    help="Response Archiver - archive images generated in your browser",
    add_completion=False,
)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Settings file (default: archiver.yaml)")
]


def _load_or_exit(config: Optional[Path], cli_overrides: Optional[Dict[str, Any]] = None) -> ArchiverSettings:
    try:
        return load_settings(config, cli_overrides)
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


@app.callback()
def main():
    """
    Response Archiver.

    Connects to a Chromium based browser over the DevTools protocol and
    archives the images selected by the capture rules in the settings file.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Response Archiver v{__version__}")


@app.command()
def run(
    config: ConfigOption = None,

    web_socket_debugger_url: Annotated[
        Optional[str],
        typer.Option("--web-socket-debugger-url", help="Connect to this DevTools WebSocket URL")
    ] = None,

    print_web_socket_debugger_url: Annotated[
        bool,
        typer.Option("--print-web-socket-debugger-url", help="Print the browser WebSocket URL")
    ] = False,

    initial_url: Annotated[
        Optional[str],
        typer.Option("--initial-url", help="URL to open when launching the browser")
    ] = None,

    skip_record: Annotated[
        bool,
        typer.Option("--skip-record", help="Write images without metadata records")
    ] = False,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug output")
    ] = False,

    debug_cdp: Annotated[
        bool,
        typer.Option("--debug-cdp", help="Log every DevTools protocol message")
    ] = False,
):
    """
    Run the image archiver until the browser connection closes.

    Examples:

        # Launch (or reuse) the browser configured in archiver.yaml
        archiver run

        # Attach to a browser started elsewhere
        archiver run --web-socket-debugger-url ws://127.0.0.1:9222/devtools/browser/<id>
    """
    configure_logging(verbose=verbose or None, protocol_trace=debug_cdp or None)

    # Only flags that were given override the settings file
    cli_overrides: Dict[str, Any] = {
        "web_socket_debugger_url": web_socket_debugger_url,
        "initial_url": initial_url,
    }
    if print_web_socket_debugger_url:
        cli_overrides["print_web_socket_debugger_url"] = True
    if skip_record:
        cli_overrides["skip_record"] = True

    settings = _load_or_exit(config, cli_overrides)
    runner = ArchiverRunner(create_image_archiver_profile(), settings)

    try:
        exit_code = asyncio.run(runner.run())
    except KeyboardInterrupt:
        typer.echo("Stopped by user", err=True)
        exit_code = ExitCode.SUCCESS
    sys.exit(exit_code.value)


@app.command()
def scan(config: ConfigOption = None):
    """Rebuild the archived image index and show its size."""
    settings = _load_or_exit(config)
    store = ArchiveStore(settings.archive_path)
    count = store.load_index()
    typer.echo(f"Images archived: {count}.")


@app.command(name="print-config")
def print_config(
    config: ConfigOption = None,

    output_format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (yaml, json)")
    ] = "yaml",
):
    """Print the effective settings."""
    if output_format.lower() not in ("yaml", "json"):
        typer.echo(f"❌ Invalid format '{output_format}'. Valid values: yaml, json", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    settings = _load_or_exit(config)
    typer.echo(print_configuration(settings, output_format))


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
