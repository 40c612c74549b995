"""Environment defaults and duration parsing for LoadGate."""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass

from loadgate._internal.errors import ConfigError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


@dataclass(frozen=True)
class EngineDefaults:
    """Fallback engine settings, used when neither the config file nor the
    command line provides a value.

    Attributes:
        request_timeout: Per-request timeout in seconds.
        grace_period: Seconds in-flight iterations get to finish after the
            run ends before they are force-cancelled.
        tick_interval: Seconds between scheduler ticks (scaling, interval
            snapshots, abort-threshold checks).
    """

    request_timeout: float = 60.0
    grace_period: float = 10.0
    tick_interval: float = 1.0


def parse_duration(value: str | float | int, name: str = "duration") -> float:
    """Parse a k6-style duration into seconds.

    Accepts numbers (seconds) and strings such as ``"500ms"``, ``"10s"``,
    ``"1m30s"`` or ``"2h"``. A bare numeric string is read as seconds.

    Args:
        value: The duration to parse.
        name: Field name used in the error message.

    Returns:
        Duration in seconds.

    Raises:
        ConfigError: If the value is not a finite, non-negative duration.
    """
    if isinstance(value, bool):
        msg = f"{name} must be a duration, got: {value!r}"
        raise ConfigError(msg)

    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                msg = f"{name} must be a duration like '10s' or '1m30s', got: {value!r}"
                raise ConfigError(msg) from None
            seconds = sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)

    if not math.isfinite(seconds):
        msg = f"{name} must be a finite duration, got: {value!r}"
        raise ConfigError(msg)
    if seconds < 0:
        msg = f"{name} must be non-negative, got: {value!r}"
        raise ConfigError(msg)
    return seconds


def _env_seconds(var: str, default: float) -> float:
    raw = os.environ.get(var)
    if raw is None:
        return default
    seconds = parse_duration(raw, var)
    if seconds <= 0:
        msg = f"{var} must be positive, got: {raw!r}"
        raise ConfigError(msg)
    return seconds


def load_defaults() -> EngineDefaults:
    """Load engine defaults from environment variables.

    Environment variables (all durations, e.g. ``"30s"`` or ``"2.5"``):
        LOADGATE_TIMEOUT: Per-request timeout (default: 60s).
        LOADGATE_GRACE_PERIOD: Graceful-stop period (default: 10s).
        LOADGATE_TICK_INTERVAL: Scheduler tick interval (default: 1s).

    Returns:
        Populated EngineDefaults instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    base = EngineDefaults()
    return EngineDefaults(
        request_timeout=_env_seconds("LOADGATE_TIMEOUT", base.request_timeout),
        grace_period=_env_seconds("LOADGATE_GRACE_PERIOD", base.grace_period),
        tick_interval=_env_seconds("LOADGATE_TICK_INTERVAL", base.tick_interval),
    )
