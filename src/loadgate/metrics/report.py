"""Final run report and its JSON document form."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loadgate.metrics.models import METRIC_NAMES

if TYPE_CHECKING:
    from datetime import datetime

    from loadgate.metrics.models import MetricSnapshot
    from loadgate.thresholds.evaluator import ThresholdResult

# Report keys for the latency block, in ladder order.
_LATENCY_KEYS = ("min", "max", "avg", "p50", "p75", "p90", "p95", "p99", "p99.9")
_LATENCY_METRIC = {
    "min": "latency_min",
    "max": "latency_max",
    "avg": "latency_avg",
}


@dataclass(frozen=True)
class TestReport:
    """Outcome of a completed run.

    Attributes:
        passed: No decidable threshold failed and no abort rule fired.
        aborted: An abort-on-fail rule stopped the run early.
        abort_reason: Which rule fired, None when not aborted.
        snapshot: Final cumulative metrics.
        thresholds: Per-rule results, in declaration order.
        timeline: Per-tick interval snapshots.
        started_at: Wall-clock start of the Running phase (UTC).
        metadata: Run description (target, load model, durations...).
    """

    __test__ = False

    passed: bool
    aborted: bool
    abort_reason: str | None
    snapshot: MetricSnapshot
    thresholds: tuple[ThresholdResult, ...]
    timeline: tuple[MetricSnapshot, ...]
    started_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "passed" if self.passed else "failed"

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-serializable report document."""
        snap = self.snapshot
        return {
            "status": self.status,
            "passed": self.passed,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "started_at": self.started_at.isoformat(),
            "metadata": dict(self.metadata),
            "metrics": {
                "requests": snap.total_requests,
                "successes": snap.successes,
                "errors": snap.total_errors,
                "error_rate": snap.error_rate,
                "success_rate": snap.success_rate,
                "rps": snap.requests_per_second,
                "dropped_iterations": snap.dropped_iterations,
                "bytes_received": snap.bytes_received,
                "latency_ms": latency_block(snap),
            },
            "status_counts": dict(sorted(snap.status_counts.items())),
            "thresholds": [
                {
                    "metric": result.rule.metric,
                    "op": result.rule.op,
                    "value": result.rule.value,
                    "abort": result.rule.abort,
                    "status": result.status.value,
                    "observed": result.observed,
                }
                for result in self.thresholds
            ],
            "timeline": [_timeline_entry(s) for s in self.timeline],
        }

    def write(self, path: str | Path) -> Path:
        """Write the JSON document to *path*, creating parent directories."""
        return write_document(self.to_dict(), path)


def latency_block(snapshot: MetricSnapshot) -> dict[str, float] | None:
    """Latency ladder in ms, or None when no request produced a sample."""
    if snapshot.latency_samples == 0:
        return None
    block: dict[str, float] = {}
    for key in _LATENCY_KEYS:
        metric = _LATENCY_METRIC.get(key, key)
        block[key] = round(getattr(snapshot, METRIC_NAMES[metric]), 3)
    return block


def _timeline_entry(snapshot: MetricSnapshot) -> dict[str, Any]:
    return {
        "elapsed_seconds": round(snapshot.elapsed_seconds, 3),
        "active_users": snapshot.active_users,
        "requests": snapshot.total_requests,
        "errors": snapshot.total_errors,
        "rps": round(snapshot.requests_per_second, 3),
        "p95_ms": round(snapshot.latency_p95, 3) if snapshot.latency_samples else None,
        "dropped_iterations": snapshot.dropped_iterations,
    }


def error_document(kind: str, message: str) -> dict[str, Any]:
    """Document emitted instead of a report when a run could not complete."""
    return {"status": "error", "error": {"kind": kind, "message": message}}


def write_document(document: dict[str, Any], path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    return out
