"""Run clock and scheduler: scale commands, open-model arrivals, stop token."""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from enum import Enum, auto
from itertools import count
from typing import TYPE_CHECKING

from loadgate._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from loadgate.patterns.base import LoadPattern

# Absorbs float error when the last tick lands exactly on the duration.
_EPSILON = 1e-9


class ScaleDirection(Enum):
    """Direction of a concurrency scale event."""

    UP = auto()
    DOWN = auto()
    HOLD = auto()


@dataclass(frozen=True)
class ScaleCommand:
    """A command to adjust the number of active virtual users.

    Attributes:
        elapsed_seconds: Time offset from test start.
        target_concurrency: Desired number of active virtual users.
        direction: Whether this is scaling up, down, or holding steady.
        delta: Absolute change in virtual user count (always >= 0).
    """

    elapsed_seconds: float
    target_concurrency: int
    direction: ScaleDirection
    delta: int


class Scheduler:
    """Single timing authority for a run.

    Produces lazy tick sequences (scale commands for the closed model,
    arrival offsets for the open model), owns the run deadline, and carries
    the global stop token.  Calling :meth:`stop` wakes every coroutine
    suspended in :meth:`sleep_until` or :meth:`pause` at once, so scheduling
    halts within one tick and never waits for in-flight requests.

    Args:
        duration_seconds: Run length in seconds.
        tick_interval: Seconds between scale / snapshot ticks.
        pattern: Closed-model pattern, None for the open model.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        duration_seconds: float,
        tick_interval: float = 1.0,
        *,
        pattern: LoadPattern | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if duration_seconds <= 0:
            msg = f"duration_seconds must be positive, got {duration_seconds}"
            raise ConfigError(msg)
        if tick_interval <= 0:
            msg = f"tick_interval must be positive, got {tick_interval}"
            raise ConfigError(msg)
        self._duration_seconds = duration_seconds
        self._tick_interval = tick_interval
        self._pattern = pattern
        self._clock = clock
        self._start_time: float | None = None
        self._stop_event = asyncio.Event()

    @property
    def duration_seconds(self) -> float:
        return self._duration_seconds

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Lazy tick sequences
    # ------------------------------------------------------------------

    def iter_ticks(self) -> Iterator[float]:
        """Yield tick offsets ``0, tick, 2*tick, ...`` up to the duration."""
        for index in count():
            elapsed = index * self._tick_interval
            if elapsed > self._duration_seconds + _EPSILON:
                return
            yield elapsed

    def iter_commands(self) -> Iterator[ScaleCommand]:
        """Yield a ScaleCommand for each tick of the pattern.

        Tracks the previous concurrency level and computes deltas.

        Raises:
            ConfigError: If the scheduler has no pattern (open model).
        """
        if self._pattern is None:
            msg = "scale commands need a closed-model pattern"
            raise ConfigError(msg)

        prev_concurrency = 0
        for elapsed, target in self._pattern.iter_concurrency(
            self._duration_seconds, self._tick_interval
        ):
            delta = target - prev_concurrency
            if delta > 0:
                direction = ScaleDirection.UP
            elif delta < 0:
                direction = ScaleDirection.DOWN
            else:
                direction = ScaleDirection.HOLD

            yield ScaleCommand(
                elapsed_seconds=elapsed,
                target_concurrency=target,
                direction=direction,
                delta=abs(delta),
            )
            prev_concurrency = target

    def iter_arrivals(self, rate: float) -> Iterator[float]:
        """Yield open-model arrival offsets ``i / rate`` below the duration.

        Raises:
            ConfigError: If *rate* is not positive.
        """
        if rate <= 0:
            msg = f"rate must be positive, got {rate}"
            raise ConfigError(msg)
        for index in count():
            offset = index / rate
            if offset >= self._duration_seconds:
                return
            yield offset

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the run clock."""
        self._start_time = self._clock()

    def elapsed(self) -> float:
        """Seconds since :meth:`start`, 0.0 before the clock started."""
        if self._start_time is None:
            return 0.0
        return self._clock() - self._start_time

    def may_start_iteration(self) -> bool:
        """Return True while new iterations are allowed to begin."""
        return (
            self._start_time is not None
            and not self._stop_event.is_set()
            and self.elapsed() < self._duration_seconds
        )

    def stop(self) -> None:
        """Halt scheduling.  Idempotent and safe to call from signal handlers."""
        self._stop_event.set()

    async def sleep_until(self, offset: float) -> bool:
        """Suspend until *offset* seconds into the run.

        Returns:
            False if the run was stopped before or while waiting.
        """
        return await self.pause(offset - self.elapsed())

    async def pause(self, seconds: float) -> bool:
        """Suspend for *seconds*, waking early on stop.

        Returns:
            False if the run was stopped before or while waiting.
        """
        if self._stop_event.is_set():
            return False
        if seconds > 0:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        return not self._stop_event.is_set()
