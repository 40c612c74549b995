"""Top-level load test orchestrator."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from loadgate._internal.logging import get_logger, setup_logging
from loadgate.engine.session import TestSession

if TYPE_CHECKING:
    from collections.abc import Callable

    from loadgate.config import TestConfig
    from loadgate.metrics.models import MetricSnapshot
    from loadgate.metrics.report import TestReport

logger = get_logger("engine.runner")


class LoadTestRunner:
    """Blocking entry point for a single run.

    Sets up logging, then drives a :class:`TestSession` on a fresh event
    loop (uvloop on POSIX platforms) until it reports.

    Attributes:
        config: The run to execute.
    """

    def __init__(
        self,
        config: TestConfig,
        *,
        on_snapshot: Callable[[MetricSnapshot], None] | None = None,
        log_level: int = logging.INFO,
        json_logs: bool = False,
        handle_signals: bool = True,
    ) -> None:
        """Initialize the runner.

        Args:
            config: The run to execute.
            on_snapshot: Optional callback invoked with each interval snapshot.
            log_level: Logging level.
            json_logs: Emit one JSON object per log line.
            handle_signals: Turn SIGINT / SIGTERM into a graceful stop.
        """
        self.config = config
        self._on_snapshot = on_snapshot
        self._log_level = log_level
        self._json_logs = json_logs
        self._handle_signals = handle_signals

    def run(self) -> TestReport:
        """Execute the load test and return its report.

        Blocks until the schedule ends, an abort rule fires, or a stop
        signal has been handled.

        Raises:
            SetupError: If a setup step failed.
            InternalError: If the engine failed.
        """
        setup_logging(level=self._log_level, json_format=self._json_logs)
        session = TestSession(
            self.config,
            on_snapshot=self._on_snapshot,
            handle_signals=self._handle_signals,
        )

        if sys.platform != "win32":
            import uvloop

            report = uvloop.run(session.run())
        else:
            report = asyncio.run(session.run())

        logger.debug("Run finished with status %s", report.status)
        return report
