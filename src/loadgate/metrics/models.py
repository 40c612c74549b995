"""Result and snapshot dataclasses for LoadGate metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "LATENCY_METRICS",
    "METRIC_NAMES",
    "MetricSnapshot",
    "Outcome",
    "RequestResult",
]


class Outcome(Enum):
    """Classification of a single request."""

    SUCCESS = "success"
    CLIENT_RESPONSE_ERROR = "client_response_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RequestResult:
    """Outcome of one iteration's request.

    Attributes:
        timestamp: Monotonic timestamp when the request was sent.
        latency_ms: Time from send to full response (or failure) in ms.
        outcome: How the request ended.
        status_code: HTTP status code, 0 if no response was received.
        error: Error description for failed requests, None otherwise.
        vu_id: Index of the virtual user that made the request.
        iteration: The virtual user's iteration number.
        bytes_received: Size of the response body in bytes.
    """

    timestamp: float
    latency_ms: float
    outcome: Outcome
    status_code: int = 0
    error: str | None = None
    vu_id: int = 0
    iteration: int = 0
    bytes_received: int = 0

    @property
    def bucket(self) -> str:
        """Status histogram key: the exact status code, or the error kind."""
        if self.status_code:
            return str(self.status_code)
        return self.outcome.value

    @property
    def has_latency(self) -> bool:
        """Aborted requests never completed, so they carry no latency sample."""
        return self.outcome is not Outcome.ABORTED


@dataclass(frozen=True)
class MetricSnapshot:
    """Consistent, read-only view of aggregated metrics.

    Latencies are in milliseconds.  Latency fields are 0.0 when
    ``latency_samples`` is 0; use :meth:`value` to tell "zero" apart from
    "no data".

    Attributes:
        elapsed_seconds: Seconds covered by this snapshot.
        active_users: Non-retiring virtual users when the snapshot was taken.
        total_requests: Results recorded (every outcome, aborted included).
        successes: Results with a 2xx response.
        total_errors: Results with any other outcome.
        error_rate: ``total_errors / total_requests`` (0.0 when empty).
        requests_per_second: ``total_requests / elapsed_seconds``.
        latency_samples: Results that contributed a latency sample.
        latency_min: Minimum latency.
        latency_max: Maximum latency.
        latency_avg: Mean latency.
        latency_p50: 50th percentile latency.
        latency_p75: 75th percentile latency.
        latency_p90: 90th percentile latency.
        latency_p95: 95th percentile latency.
        latency_p99: 99th percentile latency.
        latency_p999: 99.9th percentile latency.
        status_counts: Result count per status code or error kind.
        dropped_iterations: Open-model arrivals that found no free VU.
        bytes_received: Total response body bytes.
    """

    elapsed_seconds: float
    active_users: int
    total_requests: int = 0
    successes: int = 0
    total_errors: int = 0
    error_rate: float = 0.0
    requests_per_second: float = 0.0
    latency_samples: int = 0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_avg: float = 0.0
    latency_p50: float = 0.0
    latency_p75: float = 0.0
    latency_p90: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    latency_p999: float = 0.0
    status_counts: dict[str, int] = field(default_factory=dict)
    dropped_iterations: int = 0
    bytes_received: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successes / self.total_requests

    def value(self, metric: str) -> float | None:
        """Return the value of a named threshold metric.

        Args:
            metric: A name from :data:`METRIC_NAMES`.

        Returns:
            The metric value, or None when it has no samples to be computed
            from (latency metrics without latency samples, rates without
            requests).

        Raises:
            KeyError: If *metric* is not in the schema.
        """
        attr = METRIC_NAMES[metric]
        if metric in LATENCY_METRICS and self.latency_samples == 0:
            return None
        if metric in _RATE_METRICS and self.total_requests == 0:
            return None
        return float(getattr(self, attr))


# Threshold metric name -> MetricSnapshot attribute.
METRIC_NAMES: dict[str, str] = {
    "requests": "total_requests",
    "successes": "successes",
    "errors": "total_errors",
    "error_rate": "error_rate",
    "success_rate": "success_rate",
    "rps": "requests_per_second",
    "latency_min": "latency_min",
    "latency_max": "latency_max",
    "latency_avg": "latency_avg",
    "p50": "latency_p50",
    "p75": "latency_p75",
    "p90": "latency_p90",
    "p95": "latency_p95",
    "p99": "latency_p99",
    "p99.9": "latency_p999",
    "dropped_iterations": "dropped_iterations",
    "bytes_received": "bytes_received",
}

LATENCY_METRICS = frozenset(
    {"latency_min", "latency_max", "latency_avg", "p50", "p75", "p90", "p95", "p99", "p99.9"}
)
_RATE_METRICS = frozenset({"error_rate", "success_rate", "rps"})
