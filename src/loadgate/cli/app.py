"""Typer application behind the ``loadgate`` command."""

from __future__ import annotations

import platform

import aiohttp
import typer

from loadgate import __version__
from loadgate.cli.init_cmd import init_cmd
from loadgate.cli.run import EXIT_ERROR, EXIT_FAILED, EXIT_PASSED, run_cmd

_EXIT_CODES = (
    f"Exit codes: {EXIT_PASSED} all thresholds passed, {EXIT_FAILED} a threshold "
    f"failed or an abort rule fired, {EXIT_ERROR} configuration, setup or internal error."
)

app = typer.Typer(
    name="loadgate",
    help="HTTP load testing with CI-friendly pass/fail thresholds.",
    epilog=_EXIT_CODES,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command(
    "run",
    help="Run a load test against an HTTP target.",
    epilog=_EXIT_CODES,
    rich_help_panel="Testing",
)(run_cmd)
app.command(
    "init",
    help="Write a starter YAML test configuration.",
    rich_help_panel="Setup",
)(init_cmd)


def _show_version(value: bool) -> None:
    if not value:
        return
    typer.echo(
        f"loadgate {__version__} "
        f"(aiohttp {aiohttp.__version__}, Python {platform.python_version()})"
    )
    raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Print the loadgate, aiohttp and Python versions, then exit.",
        callback=_show_version,
        is_eager=True,
    ),
) -> None:
    """LoadGate: gate CI pipelines on HTTP latency and error thresholds."""
