"""``loadgate init``: scaffold a YAML test configuration."""

from __future__ import annotations

from pathlib import Path
from string import Template

import typer
from rich.console import Console

console = Console(stderr=True)

_CONFIG_TEMPLATE = Template("""\
# LoadGate test configuration.
#
# Run with:
#     loadgate run --config $filename
#
# Durations accept 500ms, 10s, 1m30s, 2h (a bare number means seconds).

target: $url
vus: 1
duration: 10s

# Ramp profile; replaces vus/duration when present.
# stages:
#   - {vus: 10, duration: 30s}
#   - {vus: 0, duration: 10s}

request:
  method: GET
  headers: {}
  timeout: 30s

thresholds:
  - {metric: p95, op: "<", value: 900}
  - {metric: error_rate, op: "<", value: 0.01, abort: false}

# setup:
#   - {url: $url, expect_status: [200]}

grace_period: 10s
""")


def init_cmd(
    filename: Path = typer.Argument(
        Path("loadgate.yaml"),
        help="Config file to create.",
        dir_okay=False,
    ),
    url: str = typer.Option(
        "http://localhost:8000/",
        "--url",
        help="Target URL written into the config.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing file.",
    ),
) -> None:
    """Scaffold a new test configuration file."""
    if filename.exists() and not force:
        console.print(f"[red]File already exists:[/red] {filename}")
        raise typer.Exit(code=1)

    content = _CONFIG_TEMPLATE.substitute(filename=filename.name, url=url)
    filename.write_text(content, encoding="utf-8")
    console.print(f"[green]Created config:[/green] {filename}")
