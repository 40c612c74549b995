"""Declarative pass/fail thresholds."""

from __future__ import annotations

from loadgate.thresholds.evaluator import (
    RuleStatus,
    ThresholdResult,
    evaluate,
    find_abort_failure,
    overall_passed,
)
from loadgate.thresholds.rules import OPERATORS, ThresholdRule, resolve_metric

__all__ = [
    "OPERATORS",
    "RuleStatus",
    "ThresholdResult",
    "ThresholdRule",
    "evaluate",
    "find_abort_failure",
    "overall_passed",
    "resolve_metric",
]
