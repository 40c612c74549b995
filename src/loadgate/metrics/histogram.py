"""HDR-histogram latency sketch.

Latencies are stored in an ``hdrh`` histogram as integer microseconds with
3 significant digits.  Every recorded value is quantised to within 0.1 % of
its true value, so any percentile read back is within 0.1 % (relative) of
the exact percentile of the recorded samples.  Values outside the trackable
range (1 us to 1 h) are clamped.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# Range: 1 microsecond to 1 hour (in microseconds)
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 3_600_000_000
_SIGNIFICANT_DIGITS = 3

#: Documented worst-case relative error of any percentile.
RELATIVE_ERROR = 10 ** -_SIGNIFICANT_DIGITS


class LatencySketch:
    """Bounded-error streaming quantile sketch for latencies in milliseconds.

    The sketch is order-insensitive: recording the same samples in any
    order, or merging partial sketches, yields the same percentiles.
    Min, max and mean are tracked exactly alongside the histogram.
    """

    def __init__(self) -> None:
        self._histogram = HdrHistogram(
            _LOWEST_TRACKABLE_US, _HIGHEST_TRACKABLE_US, _SIGNIFICANT_DIGITS
        )
        self._count = 0
        self._sum_ms = 0.0
        self._min_ms = 0.0
        self._max_ms = 0.0

    @property
    def count(self) -> int:
        return self._count

    def record(self, latency_ms: float) -> None:
        """Add one latency sample in milliseconds."""
        value_us = int(round(latency_ms * 1000))
        value_us = max(_LOWEST_TRACKABLE_US, min(value_us, _HIGHEST_TRACKABLE_US))
        self._histogram.record_value(value_us)
        if self._count == 0:
            self._min_ms = self._max_ms = latency_ms
        else:
            self._min_ms = min(self._min_ms, latency_ms)
            self._max_ms = max(self._max_ms, latency_ms)
        self._count += 1
        self._sum_ms += latency_ms

    def percentile(self, percentile: float) -> float:
        """Return the latency (ms) at *percentile* (0-100), 0.0 when empty."""
        if self._count == 0:
            return 0.0
        return float(self._histogram.get_value_at_percentile(percentile)) / 1000.0

    def minimum(self) -> float:
        return self._min_ms

    def maximum(self) -> float:
        return self._max_ms

    def mean(self) -> float:
        if self._count == 0:
            return 0.0
        return self._sum_ms / self._count
