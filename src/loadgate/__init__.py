"""LoadGate: HTTP load testing with CI-friendly pass/fail thresholds."""

from __future__ import annotations

__version__ = "0.1.0"

from loadgate._internal.errors import ConfigError, InternalError, LoadGateError, SetupError
from loadgate.config import ExecutorMode, SetupStep, TestConfig, load_test_config
from loadgate.engine.executor import RequestTemplate
from loadgate.engine.runner import LoadTestRunner
from loadgate.engine.session import RunState, TestSession
from loadgate.metrics.models import MetricSnapshot, Outcome, RequestResult
from loadgate.metrics.report import TestReport
from loadgate.patterns.stages import Stage
from loadgate.thresholds.rules import ThresholdRule

__all__ = [
    "ConfigError",
    "ExecutorMode",
    "InternalError",
    "LoadGateError",
    "LoadTestRunner",
    "MetricSnapshot",
    "Outcome",
    "RequestResult",
    "RequestTemplate",
    "RunState",
    "SetupError",
    "SetupStep",
    "Stage",
    "TestConfig",
    "TestReport",
    "TestSession",
    "ThresholdRule",
    "load_test_config",
]
