"""Thread-safe aggregation of request results into metric snapshots.

The ``MetricsAggregator`` is the single sink every virtual user reports to.
It keeps two sets of state:

- **Interval**: reset by :meth:`MetricsAggregator.flush_interval` each tick,
  feeds the live display and the report timeline.
- **Cumulative**: never reset, feeds thresholds and the final report.

All mutation happens under one ``threading.Lock`` held only for in-memory
updates, never across an await or a network call.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import replace
from typing import TYPE_CHECKING

from loadgate._internal.errors import InternalError
from loadgate._internal.logging import get_logger
from loadgate.metrics.histogram import LatencySketch
from loadgate.metrics.models import MetricSnapshot, Outcome

if TYPE_CHECKING:
    from loadgate.metrics.models import RequestResult

logger = get_logger("metrics.aggregator")


class _Accumulator:
    """Commutative running totals over a stream of results."""

    def __init__(self) -> None:
        self.sketch = LatencySketch()
        self.requests = 0
        self.successes = 0
        self.status_counts: Counter[str] = Counter()
        self.dropped = 0
        self.bytes_received = 0

    def add(self, result: RequestResult) -> None:
        self.requests += 1
        if result.outcome is Outcome.SUCCESS:
            self.successes += 1
        self.status_counts[result.bucket] += 1
        self.bytes_received += result.bytes_received
        if result.has_latency:
            self.sketch.record(result.latency_ms)

    def to_snapshot(self, elapsed_seconds: float, active_users: int) -> MetricSnapshot:
        sketch = self.sketch
        errors = self.requests - self.successes
        return MetricSnapshot(
            elapsed_seconds=elapsed_seconds,
            active_users=active_users,
            total_requests=self.requests,
            successes=self.successes,
            total_errors=errors,
            error_rate=errors / self.requests if self.requests else 0.0,
            requests_per_second=self.requests / max(elapsed_seconds, 0.001),
            latency_samples=sketch.count,
            latency_min=sketch.minimum(),
            latency_max=sketch.maximum(),
            latency_avg=sketch.mean(),
            latency_p50=sketch.percentile(50.0),
            latency_p75=sketch.percentile(75.0),
            latency_p90=sketch.percentile(90.0),
            latency_p95=sketch.percentile(95.0),
            latency_p99=sketch.percentile(99.0),
            latency_p999=sketch.percentile(99.9),
            status_counts=dict(self.status_counts),
            dropped_iterations=self.dropped,
            bytes_received=self.bytes_received,
        )


class MetricsAggregator:
    """Aggregates ``RequestResult`` values from concurrent virtual users.

    Any number of writers may call :meth:`record` concurrently (coroutines
    or threads).  Readers get a snapshot built while holding the lock, so it
    reflects every write that completed before the read started and never a
    partially applied sample.

    Once :meth:`finalize` has been called the aggregator is sealed and
    :meth:`record` raises :class:`InternalError`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cumulative = _Accumulator()
        self._interval = _Accumulator()
        self._interval_started = 0.0
        self._final: MetricSnapshot | None = None

    def record(self, result: RequestResult) -> None:
        """Fold one result into the interval and cumulative totals.

        Raises:
            InternalError: If the aggregator has already been finalized.
        """
        with self._lock:
            if self._final is not None:
                msg = "result recorded after the metrics were finalized"
                raise InternalError(msg)
            self._cumulative.add(result)
            self._interval.add(result)

    def record_dropped(self) -> None:
        """Count an open-model arrival that found no free virtual user."""
        with self._lock:
            if self._final is not None:
                msg = "dropped iteration recorded after the metrics were finalized"
                raise InternalError(msg)
            self._cumulative.dropped += 1
            self._interval.dropped += 1

    def snapshot(self, elapsed_seconds: float, active_users: int = 0) -> MetricSnapshot:
        """Return a consistent cumulative snapshot.

        Args:
            elapsed_seconds: Seconds since the run started (used for RPS).
            active_users: Current non-retiring virtual-user count.
        """
        with self._lock:
            if self._final is not None:
                return self._final
            return self._cumulative.to_snapshot(elapsed_seconds, active_users)

    def flush_interval(self, elapsed_seconds: float, active_users: int) -> MetricSnapshot:
        """Return the snapshot for the interval since the last flush and reset it.

        Args:
            elapsed_seconds: Seconds since the run started.
            active_users: Current non-retiring virtual-user count.

        Returns:
            Interval snapshot whose ``elapsed_seconds`` is the run offset and
            whose rate is computed over the interval length.

        Raises:
            InternalError: If the aggregator has already been finalized.
        """
        with self._lock:
            if self._final is not None:
                msg = "interval flushed after the metrics were finalized"
                raise InternalError(msg)
            interval = self._interval
            self._interval = _Accumulator()
            length = elapsed_seconds - self._interval_started
            self._interval_started = elapsed_seconds

        snapshot = interval.to_snapshot(max(length, 0.001), active_users)
        return replace(snapshot, elapsed_seconds=elapsed_seconds)

    def finalize(self, elapsed_seconds: float) -> MetricSnapshot:
        """Seal the aggregator and return the final cumulative snapshot.

        Idempotent: later calls return the same snapshot.
        """
        with self._lock:
            if self._final is None:
                self._final = self._cumulative.to_snapshot(elapsed_seconds, 0)
                logger.debug(
                    "Metrics finalized: requests=%d, errors=%d",
                    self._final.total_requests,
                    self._final.total_errors,
                )
            return self._final
