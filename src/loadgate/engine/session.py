"""Test session lifecycle management and signal handling."""

from __future__ import annotations

import asyncio
import signal
import sys
from datetime import UTC, datetime
from enum import Enum, auto
from typing import TYPE_CHECKING

from loadgate._internal.errors import InternalError, LoadGateError, SetupError
from loadgate._internal.logging import get_logger
from loadgate.config import ExecutorMode
from loadgate.engine.executor import RequestExecutor
from loadgate.engine.pool import VirtualUserPool
from loadgate.engine.scheduler import ScaleDirection, Scheduler
from loadgate.metrics.aggregator import MetricsAggregator
from loadgate.metrics.report import TestReport
from loadgate.thresholds.evaluator import evaluate, find_abort_failure, overall_passed

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from loadgate.config import SetupStep, TestConfig
    from loadgate.metrics.models import MetricSnapshot
    from loadgate.thresholds.evaluator import ThresholdResult

logger = get_logger("engine.session")


class RunState(Enum):
    """State machine for a test session."""

    IDLE = auto()
    SETUP = auto()
    RUNNING = auto()
    DRAINING = auto()
    REPORTING = auto()
    DONE = auto()


# A failed run jumps straight to DONE from whatever phase it was in.
_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.SETUP}),
    RunState.SETUP: frozenset({RunState.RUNNING, RunState.DONE}),
    RunState.RUNNING: frozenset({RunState.DRAINING, RunState.DONE}),
    RunState.DRAINING: frozenset({RunState.REPORTING, RunState.DONE}),
    RunState.REPORTING: frozenset({RunState.DONE}),
    RunState.DONE: frozenset(),
}


class TestSession:
    """Runs one load test from setup to report.

    State machine::

        IDLE -> SETUP -> RUNNING -> DRAINING -> REPORTING -> DONE
                  |         |           |
                  +---------+-----------+--> DONE (SetupError / InternalError)

    A session runs exactly once.  Request failures never stop it; only an
    abort-on-fail threshold, :meth:`stop` (or SIGINT / SIGTERM when
    ``handle_signals`` is set) or the end of the schedule do.
    """

    __test__ = False

    def __init__(
        self,
        config: TestConfig,
        *,
        on_snapshot: Callable[[MetricSnapshot], None] | None = None,
        handle_signals: bool = False,
    ) -> None:
        """Initialize a test session.

        Args:
            config: The run to execute.
            on_snapshot: Called with each tick's interval snapshot.
            handle_signals: Turn SIGINT / SIGTERM into a graceful stop.
        """
        self._config = config
        self._on_snapshot = on_snapshot
        self._handle_signals = handle_signals

        self._state = RunState.IDLE
        self._scheduler: Scheduler | None = None
        self._interrupted = False

    @property
    def state(self) -> RunState:
        """Return the current session state."""
        return self._state

    def stop(self) -> None:
        """Request a graceful stop: no new iterations, then drain and report."""
        if self._state is RunState.RUNNING and self._scheduler is not None:
            logger.info("Graceful shutdown requested")
            self._interrupted = True
            self._scheduler.stop()

    async def run(self) -> TestReport:
        """Execute the full session lifecycle.

        Returns:
            The final TestReport.

        Raises:
            SetupError: If a setup step failed; no iteration was started.
            InternalError: If the engine itself failed, or the session has
                already run.
        """
        if self._state is not RunState.IDLE:
            msg = f"TestSession can only run once (state is {self._state.name})"
            raise InternalError(msg)
        self._advance(RunState.SETUP)

        try:
            async with RequestExecutor(self._config.request) as executor:
                await self._run_setup(executor)
                report = await self._run_load(executor)
                await self._run_teardown(executor)
        except LoadGateError:
            self._advance(RunState.DONE)
            raise
        except Exception as exc:
            self._advance(RunState.DONE)
            logger.exception("Test session failed")
            msg = f"Test session failed: {exc}"
            raise InternalError(msg) from exc
        finally:
            self._remove_signal_handlers()

        self._advance(RunState.DONE)
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_setup(self, executor: RequestExecutor) -> None:
        logger.info("Starting the test")
        for number, step in enumerate(self._config.setup, start=1):
            try:
                problem = await self._run_step(executor, step)
            except Exception as exc:
                problem = f"raised {exc!r}"
            if problem is not None:
                msg = f"Setup step {number} ({step.request.method} {step.request.url}) {problem}"
                raise SetupError(msg)

    async def _run_teardown(self, executor: RequestExecutor) -> None:
        for number, step in enumerate(self._config.teardown, start=1):
            try:
                problem = await self._run_step(executor, step)
            except Exception as exc:
                problem = f"raised {exc!r}"
            if problem is not None:
                logger.warning(
                    "Teardown step %d (%s %s) %s",
                    number,
                    step.request.method,
                    step.request.url,
                    problem,
                )

    @staticmethod
    async def _run_step(executor: RequestExecutor, step: SetupStep) -> str | None:
        """Send one setup/teardown request; return a problem description."""
        result = await executor.execute(step.request)
        if result.status_code == 0:
            return f"failed: {result.error}"
        if not step.accepts(result.status_code):
            return f"returned unexpected status {result.status_code}"
        logger.debug("Step %s %s -> %d", step.request.method, step.request.url, result.status_code)
        return None

    async def _run_load(self, executor: RequestExecutor) -> TestReport:
        config = self._config
        pattern = config.build_pattern()
        aggregator = MetricsAggregator()
        scheduler = Scheduler(config.run_duration, config.tick_interval, pattern=pattern)
        pool = VirtualUserPool(
            executor,
            aggregator,
            scheduler,
            think_time=config.think_time,
            seed=config.seed,
        )
        self._scheduler = scheduler

        self._advance(RunState.RUNNING)
        self._install_signal_handlers()
        logger.info(
            "Running: target=%s %s, load=%s, duration=%.1fs",
            config.request.method,
            config.target,
            config.describe_load(),
            config.run_duration,
        )
        started_at = datetime.now(UTC)
        scheduler.start()

        dispatcher: asyncio.Task[None] | None = None
        if config.mode is ExecutorMode.OPEN:
            assert config.rate is not None
            dispatcher = asyncio.create_task(
                pool.run_arrivals(config.rate, config.open_max_vus),
                name="arrival-dispatcher",
            )

        timeline: list[MetricSnapshot] = []
        abort = await self._hold_running(scheduler, pool, aggregator, timeline)

        # Draining: no new iterations, in-flight ones get the grace period
        self._advance(RunState.DRAINING)
        scheduler.stop()
        if dispatcher is not None:
            await dispatcher
        cancelled = await pool.drain(config.grace_period)
        if pool.failure is not None:
            msg = f"Virtual user crashed: {pool.failure!r}"
            raise InternalError(msg) from pool.failure

        self._advance(RunState.REPORTING)
        elapsed = scheduler.elapsed()
        tail = aggregator.flush_interval(elapsed, 0)
        if tail.total_requests or tail.dropped_iterations:
            timeline.append(tail)
        final = aggregator.finalize(elapsed)
        results = evaluate(config.thresholds, final)
        passed = overall_passed(results, aborted=abort is not None)

        logger.info(
            "Test completed: duration=%.1fs, total_requests=%d, avg_rps=%.1f, "
            "p95=%.1fms, error_rate=%.2f%%, result=%s",
            elapsed,
            final.total_requests,
            final.requests_per_second,
            final.latency_p95,
            final.error_rate * 100,
            "passed" if passed else "failed",
        )

        return TestReport(
            passed=passed,
            aborted=abort is not None,
            abort_reason=_abort_reason(abort),
            snapshot=final,
            thresholds=results,
            timeline=tuple(timeline),
            started_at=started_at,
            metadata={
                "target": config.target,
                "method": config.request.method,
                "executor": config.mode.value,
                "load": config.describe_load(),
                "configured_duration_seconds": config.run_duration,
                "duration_seconds": round(elapsed, 3),
                "tick_interval_seconds": config.tick_interval,
                "grace_period_seconds": config.grace_period,
                "vus_spawned": pool.spawned_count,
                "vus_cancelled": cancelled,
                "interrupted": self._interrupted,
                "seed": config.seed,
            },
        )

    async def _hold_running(
        self,
        scheduler: Scheduler,
        pool: VirtualUserPool,
        aggregator: MetricsAggregator,
        timeline: list[MetricSnapshot],
    ) -> ThresholdResult | None:
        """Drive the ticks until the schedule ends, a stop, or an abort.

        Returns:
            The abort rule's failing result, or None.
        """
        rules = self._config.thresholds
        for offset, target in self._ticks(scheduler):
            if not await scheduler.sleep_until(offset):
                return None
            if target is not None and offset < scheduler.duration_seconds:
                pool.scale_to(target)

            elapsed = scheduler.elapsed()
            if offset > 0:
                snapshot = aggregator.flush_interval(elapsed, pool.active_count)
                timeline.append(snapshot)
                logger.debug(
                    "Tick %.1fs: users=%d, rps=%.1f, p95=%.1fms, errors=%d",
                    elapsed,
                    snapshot.active_users,
                    snapshot.requests_per_second,
                    snapshot.latency_p95,
                    snapshot.total_errors,
                )
                if self._on_snapshot is not None:
                    self._on_snapshot(snapshot)

            failure = find_abort_failure(rules, aggregator.snapshot(elapsed, pool.active_count))
            if failure is not None:
                logger.warning("Aborting: %s", _abort_reason(failure))
                return failure

        await scheduler.sleep_until(scheduler.duration_seconds)
        return None

    def _ticks(self, scheduler: Scheduler) -> Iterator[tuple[float, int | None]]:
        """Yield ``(offset, target VUs)``; the target is None for the open model."""
        if self._config.mode is ExecutorMode.OPEN:
            for offset in scheduler.iter_ticks():
                yield offset, None
            return
        for command in scheduler.iter_commands():
            if command.direction is not ScaleDirection.HOLD:
                logger.info(
                    "Scaling %s to %d virtual users at %.1fs",
                    command.direction.name.lower(),
                    command.target_concurrency,
                    command.elapsed_seconds,
                )
            yield command.elapsed_seconds, command.target_concurrency

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _advance(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            msg = f"Illegal session transition {self._state.name} -> {new_state.name}"
            raise InternalError(msg)
        logger.debug("Session state %s -> %s", self._state.name, new_state.name)
        self._state = new_state

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install SIGINT and SIGTERM handlers for graceful shutdown."""
        if not self._handle_signals:
            return
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, self._on_signal)
            loop.add_signal_handler(signal.SIGTERM, self._on_signal)
        else:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda _s, _f: self._on_signal())
            signal.signal(signal.SIGTERM, lambda _s, _f: self._on_signal())

    def _on_signal(self) -> None:
        logger.info("Signal received, initiating graceful shutdown")
        self.stop()

    def _remove_signal_handlers(self) -> None:
        """Remove custom signal handlers, restoring defaults."""
        if not self._handle_signals:
            return
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)


def _abort_reason(failure: ThresholdResult | None) -> str | None:
    if failure is None:
        return None
    return f"threshold {failure.rule.describe()} failed (observed {failure.observed:g})"
