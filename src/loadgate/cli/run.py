"""``loadgate run``: execute a load test with live terminal output."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from loadgate._internal.errors import ConfigError, InternalError, LoadGateError
from loadgate._internal.logging import get_logger, setup_logging
from loadgate.config import load_test_config
from loadgate.engine.runner import LoadTestRunner
from loadgate.metrics.report import error_document, write_document
from loadgate.thresholds.evaluator import RuleStatus

if TYPE_CHECKING:
    from loadgate.config import TestConfig
    from loadgate.metrics.models import MetricSnapshot
    from loadgate.metrics.report import TestReport

console = Console(stderr=True)
logger = get_logger("cli.run")

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_ERROR = 2

_STATUS_STYLE = {
    RuleStatus.PASSED: "[green]passed[/green]",
    RuleStatus.FAILED: "[red]failed[/red]",
    RuleStatus.INDETERMINATE: "[yellow]indeterminate[/yellow]",
}


# ---------------------------------------------------------------------------
# Flag helpers
# ---------------------------------------------------------------------------


def _parse_headers(values: list[str]) -> dict[str, str]:
    """Parse repeated ``--header 'Name: value'`` flags."""
    headers: dict[str, str] = {}
    for raw in values:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            msg = f"--header must look like 'Name: value', got {raw!r}"
            raise ConfigError(msg)
        headers[name.strip()] = value.strip()
    return headers


def _overrides(**flags: Any) -> dict[str, Any]:
    """Map CLI flags onto config-file keys, dropping unset ones."""
    overrides = {key: value for key, value in flags.items() if value not in (None, [], {})}
    if "rate" in overrides:
        overrides["executor"] = "open"
    return overrides


# ---------------------------------------------------------------------------
# Rich output
# ---------------------------------------------------------------------------


def _make_live_table(snapshot: MetricSnapshot | None) -> Table:
    """Build a Rich table summarising the latest interval."""
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if snapshot is None:
        table.add_row("Status", "Starting...")
        return table

    table.add_row("Elapsed", f"{snapshot.elapsed_seconds:.0f}s")
    table.add_row("Active VUs", str(snapshot.active_users))
    table.add_row("Requests/sec", f"{snapshot.requests_per_second:.1f}")
    table.add_row("Requests", str(snapshot.total_requests))
    if snapshot.latency_samples:
        table.add_row("p50 Latency", f"{snapshot.latency_p50:.1f}ms")
        table.add_row("p95 Latency", f"{snapshot.latency_p95:.1f}ms")
    table.add_row("Errors", str(snapshot.total_errors))
    table.add_row("Error Rate", f"{snapshot.error_rate * 100:.2f}%")
    return table


def _print_summary(report: TestReport) -> None:
    """Print the final metrics and threshold tables to stderr."""
    summary = report.snapshot
    title = "[green]PASSED[/green]" if report.passed else "[red]FAILED[/red]"
    table = Table(
        title=f"Test Complete: {title}",
        show_header=True,
        header_style="bold green",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Target", f"{report.metadata['method']} {report.metadata['target']}")
    table.add_row("Load", str(report.metadata["load"]))
    table.add_row("Duration", f"{report.metadata['duration_seconds']:.1f}s")
    table.add_row("Total Requests", str(summary.total_requests))
    table.add_row("Avg Requests/sec", f"{summary.requests_per_second:.1f}")
    if summary.latency_samples:
        table.add_row("Avg Latency", f"{summary.latency_avg:.1f}ms")
        table.add_row("p50 Latency", f"{summary.latency_p50:.1f}ms")
        table.add_row("p90 Latency", f"{summary.latency_p90:.1f}ms")
        table.add_row("p95 Latency", f"{summary.latency_p95:.1f}ms")
        table.add_row("p99 Latency", f"{summary.latency_p99:.1f}ms")
        table.add_row("Max Latency", f"{summary.latency_max:.1f}ms")
    table.add_row("Total Errors", str(summary.total_errors))
    table.add_row("Error Rate", f"{summary.error_rate * 100:.2f}%")
    if summary.dropped_iterations:
        table.add_row("Dropped Iterations", str(summary.dropped_iterations))
    for bucket, count in sorted(summary.status_counts.items()):
        table.add_row(f"  {bucket}", str(count))
    console.print(table)

    if report.thresholds:
        th_table = Table(
            title="Thresholds", show_header=True, header_style="bold cyan", expand=True
        )
        th_table.add_column("Rule")
        th_table.add_column("Observed", justify="right")
        th_table.add_column("Status", justify="right")
        for result in report.thresholds:
            observed = "-" if result.observed is None else f"{result.observed:g}"
            th_table.add_row(result.rule.describe(), observed, _STATUS_STYLE[result.status])
        console.print(th_table)

    if report.aborted:
        console.print(f"[red]Aborted:[/red] {report.abort_reason}")


def _emit(document: dict[str, Any], out: Path | None) -> None:
    """Write the JSON document to *out* if requested, then to stdout."""
    if out is not None:
        write_document(document, out)
        console.print(f"[dim]Report written to {out}[/dim]")
    typer.echo(json.dumps(document, indent=2))


def _fail(exc: LoadGateError, out: Path | None) -> typer.Exit:
    console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
    document = error_document(type(exc).__name__, str(exc))
    try:
        _emit(document, out)
    except OSError as write_exc:
        console.print(f"[red]Cannot write report:[/red] {write_exc}")
        typer.echo(json.dumps(document, indent=2))
    return typer.Exit(code=EXIT_ERROR)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML or JSON test configuration.",
        dir_okay=False,
    ),
    duration: str | None = typer.Option(
        None,
        "--duration",
        "-d",
        help="Test duration, e.g. 30s or 1m30s.",
    ),
    vus: int | None = typer.Option(
        None,
        "--vus",
        "-u",
        help="Concurrent virtual users (closed model).",
    ),
    url: str | None = typer.Option(
        None,
        "--url",
        help="Target URL.",
    ),
    threshold: list[str] | None = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Threshold expression such as 'p95<900' or 'error_rate<0.01:abort'. Repeatable.",
    ),
    out: Path | None = typer.Option(
        None,
        "--out",
        "-o",
        help="Also write the JSON report to this file.",
        dir_okay=False,
    ),
    rate: float | None = typer.Option(
        None,
        "--rate",
        help="Open model: iterations started per second.",
    ),
    max_vus: int | None = typer.Option(
        None,
        "--max-vus",
        help="Open model: cap on concurrently busy virtual users.",
    ),
    timeout: str | None = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout, e.g. 30s.",
    ),
    grace_period: str | None = typer.Option(
        None,
        "--grace-period",
        help="Time in-flight iterations get to finish at the end.",
    ),
    method: str | None = typer.Option(
        None,
        "--method",
        "-X",
        help="HTTP method.",
    ),
    header: list[str] | None = typer.Option(
        None,
        "--header",
        "-H",
        help="Request header 'Name: value'. Repeatable.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit log lines as JSON objects.",
    ),
) -> None:
    """Execute a load test and exit 0 (pass), 1 (fail) or 2 (error)."""
    log_level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=log_level, json_format=json_logs)

    try:
        config: TestConfig = load_test_config(
            config_file,
            _overrides(
                target=url,
                vus=vus,
                duration=duration,
                thresholds=list(threshold or []),
                rate=rate,
                max_vus=max_vus,
                timeout=timeout,
                grace_period=grace_period,
                method=method,
                headers=_parse_headers(header or []),
            ),
        )
    except LoadGateError as exc:
        raise _fail(exc, out) from exc

    console.print(
        Panel(
            f"[bold]Target:[/bold]     {config.request.method} {config.target}\n"
            f"[bold]Load:[/bold]       {config.describe_load()}\n"
            f"[bold]Thresholds:[/bold] {len(config.thresholds)}",
            title="LoadGate",
            border_style="cyan",
        )
    )

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=2,
            transient=True,
        ) as live:

            def _live_snapshot(snapshot: MetricSnapshot) -> None:
                live.update(_make_live_table(snapshot))

            report = LoadTestRunner(
                config,
                on_snapshot=_live_snapshot,
                log_level=log_level,
                json_logs=json_logs,
            ).run()
    except LoadGateError as exc:
        raise _fail(exc, out) from exc
    except Exception as exc:
        logger.exception("Load test crashed")
        raise _fail(InternalError(str(exc) or type(exc).__name__), out) from exc

    _print_summary(report)
    try:
        _emit(report.to_dict(), out)
    except OSError as exc:
        raise _fail(InternalError(f"Cannot write report to {out}: {exc}"), None) from exc

    if not report.passed:
        raise typer.Exit(code=EXIT_FAILED)
    console.print("[green]All thresholds passed.[/green]")
