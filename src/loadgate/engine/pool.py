"""Virtual user pool: one asyncio task per virtual user."""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loadgate._internal.logging import get_logger
from loadgate.metrics.models import Outcome, RequestResult

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from loadgate._internal.types import ThinkTime
    from loadgate.engine.executor import RequestExecutor
    from loadgate.engine.scheduler import Scheduler
    from loadgate.metrics.aggregator import MetricsAggregator

logger = get_logger("engine.pool")


@dataclass
class VirtualUser:
    """One simulated client.

    Attributes:
        index: Sequential identity, starting at 0.
        seed: Seed of the user's private random generator.
        iterations: Iterations completed so far.
        retiring: Set on scale-down; the user exits after its current
            iteration.
    """

    index: int
    seed: int
    iterations: int = 0
    retiring: bool = False
    rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.rng = random.Random(self.seed)  # noqa: S311


class VirtualUserPool:
    """Keeps the number of running virtual users at the scheduler's target.

    Closed model: :meth:`scale_to` spawns users or retires the most recently
    spawned ones (LIFO).  A retiring user finishes its in-flight iteration
    before exiting; scale-down never interrupts a request.

    Open model: :meth:`run_arrivals` starts one iteration per arrival on an
    idle user, spawning users up to ``max_vus``.

    Request failures are recorded as results and never end a user.  Any
    other exception escaping a user is kept in :attr:`failure` and stops the
    scheduler.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        aggregator: MetricsAggregator,
        scheduler: Scheduler,
        *,
        think_time: ThinkTime = (0.0, 0.0),
        seed: int | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            executor: Executor every user sends its request through.
            aggregator: Sink for request results.
            scheduler: Timing authority and stop token.
            think_time: Random pause range (min, max) in seconds between a
                closed-model user's iterations.
            seed: Base seed for the users' random generators.  Random when
                None.
        """
        self._executor = executor
        self._aggregator = aggregator
        self._scheduler = scheduler
        self._think_time = think_time
        self._seed = seed if seed is not None else random.randrange(2**32)  # noqa: S311

        self._active: list[tuple[VirtualUser, asyncio.Task[None]]] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._next_index = 0
        self._busy = 0
        self.failure: BaseException | None = None

    @property
    def active_count(self) -> int:
        """Non-retiring closed-model users plus busy open-model users."""
        return len(self._active) + self._busy

    @property
    def spawned_count(self) -> int:
        """Total virtual users created so far."""
        return self._next_index

    @property
    def running_tasks(self) -> int:
        """Worker tasks not yet finished, retiring ones included."""
        return sum(1 for t in self._tasks if not t.done())

    # ------------------------------------------------------------------
    # Closed model
    # ------------------------------------------------------------------

    def scale_to(self, target: int) -> None:
        """Adjust the number of non-retiring users to *target*.

        Args:
            target: Desired number of active virtual users.
        """
        self._active = [(vu, t) for vu, t in self._active if not t.done()]
        current = len(self._active)

        if target > current:
            for _ in range(target - current):
                vu = self._new_user()
                task = self._spawn(self._run_closed(vu), vu)
                self._active.append((vu, task))
        elif target < current:
            for _ in range(current - target):
                vu, _task = self._active.pop()
                vu.retiring = True

        if target != current:
            logger.debug("Scaled virtual users %d -> %d", current, target)

    async def _run_closed(self, vu: VirtualUser) -> None:
        while not vu.retiring and self._scheduler.may_start_iteration():
            await self._iterate(vu)
            if not await self._think(vu):
                break

    async def _think(self, vu: VirtualUser) -> bool:
        low, high = self._think_time
        delay = vu.rng.uniform(low, high) if high > 0 else 0.0
        if delay <= 0:
            # Yield so a user hammering a fast failure cannot starve the loop
            await asyncio.sleep(0)
            return not self._scheduler.stopped
        return await self._scheduler.pause(delay)

    # ------------------------------------------------------------------
    # Open model
    # ------------------------------------------------------------------

    async def run_arrivals(self, rate: float, max_vus: int) -> None:
        """Start one iteration per arrival at *rate* per second.

        Arrivals that find every one of the *max_vus* users busy are counted
        as dropped iterations.  Returns when the arrivals run out or the
        scheduler stops; in-flight iterations are left for :meth:`drain`.
        """
        idle: deque[VirtualUser] = deque()
        for offset in self._scheduler.iter_arrivals(rate):
            if not await self._scheduler.sleep_until(offset):
                break
            if idle:
                vu = idle.popleft()
            elif self._next_index < max_vus:
                vu = self._new_user()
            else:
                self._aggregator.record_dropped()
                continue
            self._busy += 1
            self._spawn(self._run_open_iteration(vu, idle), vu)

    async def _run_open_iteration(self, vu: VirtualUser, idle: deque[VirtualUser]) -> None:
        try:
            await self._iterate(vu)
        finally:
            self._busy -= 1
        idle.append(vu)

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def _iterate(self, vu: VirtualUser) -> None:
        """Run one iteration and report its result."""
        started = time.monotonic()
        try:
            result = await self._executor.execute(vu_id=vu.index, iteration=vu.iterations)
        except asyncio.CancelledError:
            self._aggregator.record(
                RequestResult(
                    timestamp=started,
                    latency_ms=(time.monotonic() - started) * 1000,
                    outcome=Outcome.ABORTED,
                    error="cancelled after the graceful stop period",
                    vu_id=vu.index,
                    iteration=vu.iterations,
                )
            )
            raise
        vu.iterations += 1
        self._aggregator.record(result)

    def _new_user(self) -> VirtualUser:
        index = self._next_index
        self._next_index += 1
        return VirtualUser(index=index, seed=self._seed + index)

    def _spawn(self, coro: Coroutine[Any, Any, None], vu: VirtualUser) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"virtual-user-{vu.index}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self.failure is None:
            self.failure = exc
            logger.error("Virtual user %s crashed: %r", task.get_name(), exc)
            self._scheduler.stop()

    async def drain(self, grace_period: float) -> int:
        """Wait for in-flight iterations, then force-cancel the stragglers.

        Callers stop the scheduler first so no new iteration starts.

        Args:
            grace_period: Seconds to wait before cancelling.

        Returns:
            Number of users that were still running after the grace period
            and had to be cancelled.  Their in-flight requests are recorded
            as aborted.
        """
        pending = {t for t in self._tasks if not t.done()}
        self._active.clear()
        if not pending:
            return 0

        _done, pending = await asyncio.wait(pending, timeout=grace_period)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                "%d virtual user(s) still busy after %.1fs grace period, cancelling",
                len(pending),
                grace_period,
            )
            _done, stuck = await asyncio.wait(pending, timeout=5.0)
            if stuck:
                logger.error("%d virtual user(s) ignored cancellation", len(stuck))
        return len(pending)
