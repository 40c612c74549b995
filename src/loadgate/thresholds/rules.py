"""Threshold rules and the expression syntax used to declare them."""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadgate._internal.errors import ConfigError
from loadgate.metrics.models import METRIC_NAMES

if TYPE_CHECKING:
    from collections.abc import Callable

    from loadgate._internal.types import Operator

OPERATORS: dict[Operator, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_OP_PATTERN = re.compile(r"(<=|>=|==|!=|<|>)")
_PERCENTILE_CALL = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")
_ABORT_SUFFIX = ":abort"

# k6 aggregation names usable on their own or after a latency metric.
_AGGREGATIONS = {
    "avg": "latency_avg",
    "min": "latency_min",
    "max": "latency_max",
    "med": "p50",
}

# k6 metric -> (default aggregation, {aggregation: metric}).
_K6_METRICS: dict[str, tuple[str, dict[str, str]]] = {
    "http_req_duration": ("p95", {}),
    "http_req_failed": ("error_rate", {"rate": "error_rate"}),
    "checks": ("success_rate", {"rate": "success_rate"}),
    "http_reqs": ("requests", {"count": "requests", "rate": "rps"}),
    "dropped_iterations": ("dropped_iterations", {"count": "dropped_iterations"}),
}


def _resolve_aggregation(name: str) -> str:
    match = _PERCENTILE_CALL.match(name)
    if match:
        return f"p{match.group(1)}"
    return _AGGREGATIONS.get(name, name)


def resolve_metric(name: str) -> str:
    """Map a metric name (``p95``, ``p(95)``, ``http_req_duration:avg``...)
    to a canonical metric name.

    Raises:
        ConfigError: If *name* is not a known metric.
    """
    text = name.strip().lower().replace(" ", "")
    base, _, aggregation = text.partition(":")

    if base in _K6_METRICS:
        default, by_aggregation = _K6_METRICS[base]
        if not aggregation:
            resolved = default
        else:
            resolved = by_aggregation.get(aggregation) or _resolve_aggregation(aggregation)
    elif aggregation:
        resolved = _resolve_aggregation(aggregation)
    else:
        resolved = _resolve_aggregation(base)

    if resolved not in METRIC_NAMES:
        known = ", ".join(sorted(METRIC_NAMES))
        msg = f"Unknown threshold metric {name!r}. Known metrics: {known}"
        raise ConfigError(msg)
    return resolved


@dataclass(frozen=True)
class ThresholdRule:
    """A pass/fail condition over one aggregated metric.

    Attributes:
        metric: Canonical metric name (a key of ``METRIC_NAMES``).
        op: Comparison operator, one of ``OPERATORS``.
        value: Bound the observed value is compared against.
        abort: Stop the run as soon as this rule fails.

    Raises:
        ConfigError: If the metric or operator is unknown.
    """

    metric: str
    op: Operator
    value: float
    abort: bool = False

    def __post_init__(self) -> None:
        if self.metric not in METRIC_NAMES:
            object.__setattr__(self, "metric", resolve_metric(self.metric))
        if self.op not in OPERATORS:
            msg = f"Unknown threshold operator {self.op!r}; use one of {', '.join(OPERATORS)}"
            raise ConfigError(msg)

    @classmethod
    def parse(cls, expression: str, *, abort: bool = False) -> ThresholdRule:
        """Parse ``METRIC OP VALUE[:abort]``.

        Examples: ``p95<900``, ``error_rate < 0.01:abort``,
        ``http_req_duration:p(95)<900``.

        Raises:
            ConfigError: If the expression is malformed.
        """
        text = expression.strip()
        if text.lower().endswith(_ABORT_SUFFIX):
            text = text[: -len(_ABORT_SUFFIX)]
            abort = True

        parts = _OP_PATTERN.split(text, maxsplit=1)
        if len(parts) != 3 or not parts[0].strip() or not parts[2].strip():
            msg = f"Threshold must look like 'p95<900', got: {expression!r}"
            raise ConfigError(msg)
        metric, op, raw_value = parts

        try:
            value = float(raw_value)
        except ValueError:
            msg = f"Threshold bound must be a number, got {raw_value.strip()!r} in {expression!r}"
            raise ConfigError(msg) from None

        return cls(metric=resolve_metric(metric), op=op, value=value, abort=abort)

    def holds_for(self, observed: float) -> bool:
        """Return True if *observed* satisfies this rule."""
        return OPERATORS[self.op](observed, self.value)

    def describe(self) -> str:
        suffix = " (abort)" if self.abort else ""
        return f"{self.metric} {self.op} {self.value:g}{suffix}"
