"""Staged ramp pattern: a sequence of ``{vus, duration}`` windows."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadgate._internal.errors import ConfigError
from loadgate.patterns.base import LoadPattern, _validate_non_negative, _validate_positive

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class Stage:
    """One ramp stage.

    Attributes:
        vus: Target virtual-user count reached at the end of the stage.
        duration: Stage length in seconds.
    """

    vus: int
    duration: float


class StagesPattern(LoadPattern):
    """Ramp through a sequence of stages, k6 style.

    Each stage linearly moves the VU count from the previous stage's target
    (0 before the first stage) to its own target over the stage's duration.
    A stage with the same target as its predecessor holds steady.  Stage
    windows are half-open ``[start, end)``, so the tick that lands exactly
    on a boundary belongs to the new stage.  Inside a stage the count never
    leaves the range spanned by the two adjacent targets.

    Args:
        stages: At least one stage.  Durations must be > 0 and targets >= 0.

    Raises:
        ConfigError: If *stages* is empty or any stage is out of range.

    Example::

        pattern = StagesPattern(
            [
                Stage(vus=10, duration=30.0),  # ramp 0 -> 10
                Stage(vus=10, duration=60.0),  # hold
                Stage(vus=0, duration=10.0),  # ramp down
            ]
        )
    """

    def __init__(self, stages: Sequence[Stage]) -> None:
        if not stages:
            msg = "stages must contain at least one {vus, duration} entry"
            raise ConfigError(msg)
        for i, stage in enumerate(stages):
            _validate_non_negative(stage.vus, f"stages[{i}].vus")
            _validate_positive(stage.duration, f"stages[{i}].duration")
        if max(stage.vus for stage in stages) < 1:
            msg = "at least one stage must target >= 1 virtual user"
            raise ConfigError(msg)

        self._stages = tuple(stages)
        self._starts: list[float] = []
        offset = 0.0
        for stage in self._stages:
            self._starts.append(offset)
            offset += stage.duration
        self._total = offset

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    def stage_index_at(self, elapsed: float) -> int:
        """Return the index of the stage whose window contains *elapsed*.

        Offsets at or past the end of the last stage map to the last stage.
        """
        index = bisect_right(self._starts, elapsed) - 1
        return min(max(index, 0), len(self._stages) - 1)

    def users_at(self, elapsed: float) -> int:
        if elapsed >= self._total:
            return self._stages[-1].vus
        index = self.stage_index_at(elapsed)
        stage = self._stages[index]
        previous = self._stages[index - 1].vus if index > 0 else 0
        fraction = (elapsed - self._starts[index]) / stage.duration
        users = round(previous + (stage.vus - previous) * fraction)
        # Rounding never leaves the span of the two adjacent targets.
        return min(max(users, min(previous, stage.vus)), max(previous, stage.vus))

    def describe(self) -> str:
        steps = ", ".join(f"{s.vus} VUs/{s.duration:g}s" for s in self._stages)
        return f"Stages: {steps} ({self._total:g}s total)"
