"""Evaluate threshold rules against a metric snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from loadgate.metrics.models import MetricSnapshot
    from loadgate.thresholds.rules import ThresholdRule


class RuleStatus(Enum):
    """Result of evaluating one rule."""

    PASSED = "passed"
    FAILED = "failed"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of one rule.

    Attributes:
        rule: The evaluated rule.
        status: Passed, failed, or indeterminate (metric had no samples).
        observed: The metric value, None when indeterminate.
    """

    rule: ThresholdRule
    status: RuleStatus
    observed: float | None = None


def evaluate_rule(rule: ThresholdRule, snapshot: MetricSnapshot) -> ThresholdResult:
    observed = snapshot.value(rule.metric)
    if observed is None:
        return ThresholdResult(rule=rule, status=RuleStatus.INDETERMINATE)
    status = RuleStatus.PASSED if rule.holds_for(observed) else RuleStatus.FAILED
    return ThresholdResult(rule=rule, status=status, observed=observed)


def evaluate(
    rules: Iterable[ThresholdRule],
    snapshot: MetricSnapshot,
) -> tuple[ThresholdResult, ...]:
    """Evaluate every rule, in order, against *snapshot*."""
    return tuple(evaluate_rule(rule, snapshot) for rule in rules)


def find_abort_failure(
    rules: Iterable[ThresholdRule],
    snapshot: MetricSnapshot,
) -> ThresholdResult | None:
    """Return the first abort-on-fail rule that decidably fails, if any.

    Indeterminate abort rules never trigger an abort.
    """
    for rule in rules:
        if not rule.abort:
            continue
        result = evaluate_rule(rule, snapshot)
        if result.status is RuleStatus.FAILED:
            return result
    return None


def overall_passed(results: Iterable[ThresholdResult], *, aborted: bool = False) -> bool:
    """Return True when no decidable rule failed and no abort rule fired.

    Indeterminate rules neither pass nor fail the run.
    """
    if aborted:
        return False
    return all(r.status is not RuleStatus.FAILED for r in results)
