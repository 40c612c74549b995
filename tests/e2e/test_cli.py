"""End-to-end tests for the LoadGate CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

from loadgate import __version__
from loadgate.cli.app import app
from loadgate.config import load_test_config
from loadgate.engine.executor import RequestExecutor

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _fast_ticks(monkeypatch: pytest.MonkeyPatch) -> None:
    """Short ticks and grace period so runs finish quickly."""
    monkeypatch.setenv("LOADGATE_TICK_INTERVAL", "0.25")
    monkeypatch.setenv("LOADGATE_GRACE_PERIOD", "1s")


@pytest.fixture
def report_path(tmp_path: Path) -> Path:
    return tmp_path / "out" / "report.json"


def _read(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def _write_config(tmp_path: Path, data: dict[str, Any]) -> Path:
    path = tmp_path / "loadgate.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Tests: version and help
# ---------------------------------------------------------------------------


def test_version_flag():
    """--version prints version and exits 0."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_version_short_flag():
    """-V also prints version."""
    result = runner.invoke(app, ["-V"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_output():
    """--help shows usage information."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "loadgate" in result.output.lower()


def test_run_help():
    """loadgate run --help shows run options."""
    result = runner.invoke(app, ["run", "--help"])
    assert result.exit_code == 0
    for option in ("--config", "--vus", "--duration", "--threshold", "--out"):
        assert option in result.output


# ---------------------------------------------------------------------------
# Tests: loadgate init
# ---------------------------------------------------------------------------


def test_init_creates_loadable_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """The scaffolded file is a valid configuration."""
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init", "--url", "http://app:8000/wait"])
    assert result.exit_code == 0

    generated = tmp_path / "loadgate.yaml"
    assert generated.exists()
    config = load_test_config(generated)
    assert config.target == "http://app:8000/wait"
    assert config.vus == 1
    assert config.duration == 10.0
    assert len(config.thresholds) == 2


def test_init_custom_filename(tmp_path: Path):
    target = tmp_path / "smoke.yaml"
    result = runner.invoke(app, ["init", str(target)])
    assert result.exit_code == 0
    assert target.exists()


def test_init_rejects_existing_file(tmp_path: Path):
    """loadgate init refuses to overwrite an existing file."""
    existing = tmp_path / "existing.yaml"
    existing.write_text("# placeholder")
    result = runner.invoke(app, ["init", str(existing)])
    assert result.exit_code == 1
    assert existing.read_text() == "# placeholder"


def test_init_force_overwrites(tmp_path: Path):
    existing = tmp_path / "existing.yaml"
    existing.write_text("# placeholder")
    result = runner.invoke(app, ["init", str(existing), "--force"])
    assert result.exit_code == 0
    assert "target:" in existing.read_text()


# ---------------------------------------------------------------------------
# Tests: loadgate run outcomes
# ---------------------------------------------------------------------------


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_run_passes(sync_stub_server: str, report_path: Path):
    """A run whose thresholds all hold exits 0 and writes the report."""
    result = runner.invoke(
        app,
        [
            "run",
            "--url",
            f"{sync_stub_server}/wait?delay=0.02",
            "--vus",
            "2",
            "--duration",
            "1s",
            "--threshold",
            "p95<900",
            "--threshold",
            "error_rate<0.01",
            "--out",
            str(report_path),
        ],
    )
    assert result.exit_code == 0, result.output

    document = _read(report_path)
    assert document["status"] == "passed"
    assert document["passed"] is True
    assert document["metrics"]["requests"] > 0
    assert document["metrics"]["latency_ms"]["p95"] < 900
    assert [t["status"] for t in document["thresholds"]] == ["passed", "passed"]
    assert document["metadata"]["vus_spawned"] == 2


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_run_fails_threshold(sync_stub_server: str, report_path: Path):
    """A failed threshold exits 1."""
    result = runner.invoke(
        app,
        [
            "run",
            "--url",
            f"{sync_stub_server}/wait?delay=0.05",
            "--duration",
            "1s",
            "-t",
            "p95<10",
            "-o",
            str(report_path),
        ],
    )
    assert result.exit_code == 1, result.output

    document = _read(report_path)
    assert document["status"] == "failed"
    assert document["aborted"] is False
    assert document["thresholds"][0]["status"] == "failed"
    assert document["thresholds"][0]["observed"] >= 10


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_run_aborts_on_fail(sync_stub_server: str, report_path: Path):
    """An abort rule ends a long run early and still reports."""
    result = runner.invoke(
        app,
        [
            "run",
            "--url",
            f"{sync_stub_server}/status?status=500",
            "--duration",
            "1m",
            "-t",
            "error_rate<0.01:abort",
            "-o",
            str(report_path),
        ],
    )
    assert result.exit_code == 1, result.output

    document = _read(report_path)
    assert document["aborted"] is True
    assert "error_rate" in document["abort_reason"]
    assert document["metadata"]["duration_seconds"] < 10
    assert document["status_counts"] == {"500": document["metrics"]["requests"]}


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_run_unreachable_target_is_a_failure_not_an_error(unreachable_url: str, report_path: Path):
    """Network errors are measurements: exit 1 from the threshold, never 2."""
    result = runner.invoke(
        app,
        [
            "run",
            "--url",
            unreachable_url,
            "--duration",
            "500ms",
            "-t",
            "http_req_failed<0.01",
            "-o",
            str(report_path),
        ],
    )
    assert result.exit_code == 1, result.output
    document = _read(report_path)
    assert list(document["status_counts"]) == ["network_error"]


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_run_open_model(sync_stub_server: str, report_path: Path):
    result = runner.invoke(
        app,
        [
            "run",
            "--url",
            f"{sync_stub_server}/ok",
            "--rate",
            "8",
            "--max-vus",
            "2",
            "--duration",
            "1s",
            "-o",
            str(report_path),
        ],
    )
    assert result.exit_code == 0, result.output

    document = _read(report_path)
    metrics = document["metrics"]
    assert document["metadata"]["executor"] == "open"
    assert metrics["requests"] + metrics["dropped_iterations"] == 8


# ---------------------------------------------------------------------------
# Tests: config files
# ---------------------------------------------------------------------------


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_run_k6_style_config(tmp_path: Path, sync_stub_server: str, report_path: Path):
    """Stages, k6 threshold mapping and a setup step from a YAML file."""
    config_file = _write_config(
        tmp_path,
        {
            "target": f"{sync_stub_server}/wait?delay=0.01",
            "stages": [
                {"target": 2, "duration": "500ms"},
                {"target": 0, "duration": "500ms"},
            ],
            "thresholds": {
                "http_req_duration": ["p(95)<900"],
                "http_req_failed": [{"threshold": "rate<0.01", "abortOnFail": True}],
            },
            "setup": [{"url": f"{sync_stub_server}/ok"}],
        },
    )

    result = runner.invoke(app, ["run", "--config", str(config_file), "-o", str(report_path)])
    assert result.exit_code == 0, result.output

    document = _read(report_path)
    rules = {(t["metric"], t["abort"]) for t in document["thresholds"]}
    assert rules == {("p95", False), ("error_rate", True)}
    assert document["metadata"]["configured_duration_seconds"] == pytest.approx(1.0)
    assert document["metadata"]["vus_spawned"] == 2


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_cli_flags_override_config(tmp_path: Path, sync_stub_server: str, report_path: Path):
    """Method and header flags merge into the file's request section."""
    config_file = _write_config(
        tmp_path,
        {
            "target": f"{sync_stub_server}/check?method=POST",
            "duration": "1m",
            "request": {"body": "ping", "headers": {"X-Other": "1"}},
        },
    )

    result = runner.invoke(
        app,
        [
            "run",
            "-c",
            str(config_file),
            "--duration",
            "500ms",
            "-X",
            "POST",
            "-H",
            "X-Check: ping",
            "-o",
            str(report_path),
        ],
    )
    assert result.exit_code == 0, result.output

    document = _read(report_path)
    assert document["metadata"]["method"] == "POST"
    assert document["metadata"]["configured_duration_seconds"] == pytest.approx(0.5)
    assert list(document["status_counts"]) == ["200"]


@pytest.mark.slow
@pytest.mark.timeout(60)
def test_vus_and_duration_flags_replace_config_stages(
    tmp_path: Path, sync_stub_server: str, report_path: Path
):
    """As in k6, --vus/--duration turn a staged file into a flat run."""
    config_file = _write_config(
        tmp_path,
        {
            "target": f"{sync_stub_server}/ok",
            "stages": [{"target": 10, "duration": "1m"}],
        },
    )

    result = runner.invoke(
        app,
        ["run", "-c", str(config_file), "--vus", "2", "--duration", "500ms", "-o", str(report_path)],
    )
    assert result.exit_code == 0, result.output

    metadata = _read(report_path)["metadata"]
    assert metadata["configured_duration_seconds"] == pytest.approx(0.5)
    assert metadata["vus_spawned"] == 2


# ---------------------------------------------------------------------------
# Tests: errors exit 2
# ---------------------------------------------------------------------------


def test_missing_target_is_a_config_error(report_path: Path):
    result = runner.invoke(app, ["run", "--duration", "1s", "-o", str(report_path)])
    assert result.exit_code == 2

    document = _read(report_path)
    assert document["status"] == "error"
    assert document["error"]["kind"] == "ConfigError"
    assert "target" in document["error"]["message"]


@pytest.mark.parametrize(
    "args",
    [
        ["--duration", "soon"],
        ["--vus", "0"],
        ["-t", "p95<fast"],
        ["-t", "latency_p42<1"],
        ["-H", "no-colon-here"],
        ["--max-vus", "0", "--rate", "5"],
    ],
)
def test_invalid_flags_exit_2(args: list[str], report_path: Path):
    result = runner.invoke(app, ["run", "--url", "http://127.0.0.1:9/", *args, "-o", str(report_path)])
    assert result.exit_code == 2, result.output
    assert _read(report_path)["error"]["kind"] == "ConfigError"


def test_missing_config_file_exits_2(tmp_path: Path, report_path: Path):
    result = runner.invoke(app, ["run", "-c", str(tmp_path / "nope.yaml"), "-o", str(report_path)])
    assert result.exit_code == 2
    assert "Cannot read" in _read(report_path)["error"]["message"]


def test_unknown_config_key_exits_2(tmp_path: Path, report_path: Path):
    config_file = _write_config(tmp_path, {"target": "http://127.0.0.1:9/", "users": 3})
    result = runner.invoke(app, ["run", "-c", str(config_file), "-o", str(report_path)])
    assert result.exit_code == 2
    assert "users" in _read(report_path)["error"]["message"]


@pytest.mark.timeout(60)
def test_setup_failure_exits_2(tmp_path: Path, sync_stub_server: str, report_path: Path):
    config_file = _write_config(
        tmp_path,
        {
            "target": f"{sync_stub_server}/ok",
            "duration": "1s",
            "setup": [{"url": f"{sync_stub_server}/status?status=503"}],
        },
    )
    result = runner.invoke(app, ["run", "-c", str(config_file), "-o", str(report_path)])
    assert result.exit_code == 2, result.output

    error = _read(report_path)["error"]
    assert error["kind"] == "SetupError"
    assert "503" in error["message"]


@pytest.mark.timeout(60)
def test_crashed_virtual_user_exits_2(
    sync_stub_server: str, report_path: Path, monkeypatch: pytest.MonkeyPatch
):
    async def broken_execute(
        self: RequestExecutor, template: object = None, *, vu_id: int = 0, iteration: int = 0
    ) -> None:
        raise ValueError("bug in the request path")

    monkeypatch.setattr(RequestExecutor, "execute", broken_execute)

    result = runner.invoke(
        app, ["run", "--url", f"{sync_stub_server}/ok", "--duration", "5s", "-o", str(report_path)]
    )
    assert result.exit_code == 2, result.output

    document = _read(report_path)
    assert document["status"] == "error"
    assert document["error"]["kind"] == "InternalError"
    assert "Virtual user crashed" in document["error"]["message"]
