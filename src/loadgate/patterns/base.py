"""Abstract base class for virtual-user load patterns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from itertools import count
from typing import TYPE_CHECKING

from loadgate._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterator

# Absorbs float error when the last tick lands exactly on the duration.
_EPSILON = 1e-9


class LoadPattern(ABC):
    """Abstract base for closed-model traffic patterns.

    A pattern maps elapsed time to the number of virtual users that should
    be active.  Subclasses implement :meth:`users_at`; :meth:`iter_concurrency`
    samples it at a fixed tick interval.

    Example::

        pattern = StagesPattern([Stage(vus=10, duration=30.0)])
        for elapsed, users in pattern.iter_concurrency(duration_seconds=30.0):
            print(f"t={elapsed:.1f}s -> {users} users")
    """

    @abstractmethod
    def users_at(self, elapsed: float) -> int:
        """Return the target number of virtual users at *elapsed* seconds."""

    @abstractmethod
    def describe(self) -> str:
        """Return a short human-readable description for logs and reports."""

    def iter_concurrency(
        self,
        duration_seconds: float,
        tick_interval: float = 1.0,
    ) -> Iterator[tuple[float, int]]:
        """Yield ``(elapsed_seconds, target_concurrency)`` at each tick.

        Offsets are computed as ``index * tick_interval`` so long runs do
        not accumulate float drift.  No tick is yielded past
        *duration_seconds*.

        Args:
            duration_seconds: Total duration to generate ticks for.
            tick_interval: Seconds between ticks.  Defaults to 1.0.

        Yields:
            ``(elapsed_seconds, target_concurrency)`` tuples.
        """
        _validate_positive(duration_seconds, "duration_seconds")
        _validate_positive(tick_interval, "tick_interval")
        for index in count():
            elapsed = index * tick_interval
            if elapsed > duration_seconds + _EPSILON:
                return
            yield (elapsed, self.users_at(elapsed))


def _validate_positive(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is not strictly positive."""
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        raise ConfigError(msg)


def _validate_non_negative(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is negative."""
    if value < 0:
        msg = f"{name} must be non-negative, got {value}"
        raise ConfigError(msg)
