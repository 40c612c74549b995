"""Test configuration: the immutable ``TestConfig`` and its loaders.

A run is described by a YAML (or JSON) document::

    target: http://app:8000/wait
    vus: 1
    duration: 10s
    thresholds:
      - {metric: p95, op: "<", value: 900}

Command-line flags are applied on top of the file as overrides.  Every
problem is reported as :class:`ConfigError` before anything runs.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from loadgate._internal.config import EngineDefaults, load_defaults, parse_duration
from loadgate._internal.errors import ConfigError
from loadgate.engine.executor import RequestTemplate
from loadgate.patterns.constant import ConstantPattern
from loadgate.patterns.stages import Stage, StagesPattern
from loadgate.thresholds.rules import ThresholdRule

if TYPE_CHECKING:
    from collections.abc import Mapping

    from loadgate._internal.types import ThinkTime
    from loadgate.patterns.base import LoadPattern

_TOP_LEVEL_KEYS = frozenset(
    {
        "target",
        "url",
        "vus",
        "duration",
        "stages",
        "thresholds",
        "request",
        "executor",
        "rate",
        "max_vus",
        "think_time",
        "setup",
        "teardown",
        "grace_period",
        "tick_interval",
        "seed",
    }
)
_REQUEST_KEYS = frozenset({"method", "headers", "body", "timeout"})
_STEP_KEYS = frozenset({"url", "method", "headers", "body", "timeout", "expect_status"})


class ExecutorMode(Enum):
    """Load model."""

    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class SetupStep:
    """A declarative setup or teardown request.

    Attributes:
        request: The request to send.
        expect_status: Accepted status codes; empty means any 2xx.
    """

    request: RequestTemplate
    expect_status: tuple[int, ...] = ()

    def accepts(self, status_code: int) -> bool:
        if self.expect_status:
            return status_code in self.expect_status
        return 200 <= status_code < 300


@dataclass(frozen=True)
class TestConfig:
    """Everything a run needs, fixed before the run starts.

    Attributes:
        request: Request template every iteration sends.
        vus: Closed model: fixed virtual-user count (ignored with stages).
        duration: Run length in seconds (ignored with stages).
        stages: Closed model ramp profile; overrides vus/duration.
        mode: Closed (looping VUs) or open (fixed arrival rate).
        rate: Open model: iterations started per second.
        max_vus: Open model: cap on concurrently busy VUs.
        think_time: Closed model: random pause range between iterations.
        thresholds: Pass/fail rules.
        setup: Steps run once before any VU starts.
        teardown: Steps run once after the metrics are final.
        grace_period: Seconds in-flight iterations get to finish at the end.
        tick_interval: Seconds between scheduler ticks.
        seed: Base seed for the VUs' random generators.
    """

    __test__ = False

    request: RequestTemplate
    vus: int = 1
    duration: float = 10.0
    stages: tuple[Stage, ...] = ()
    mode: ExecutorMode = ExecutorMode.CLOSED
    rate: float | None = None
    max_vus: int | None = None
    think_time: ThinkTime = (0.0, 0.0)
    thresholds: tuple[ThresholdRule, ...] = ()
    setup: tuple[SetupStep, ...] = ()
    teardown: tuple[SetupStep, ...] = ()
    grace_period: float = 10.0
    tick_interval: float = 1.0
    seed: int | None = None

    def __post_init__(self) -> None:
        _require_http_url(self.request.url, "target")
        if self.request.timeout <= 0:
            msg = f"request timeout must be positive, got {self.request.timeout}"
            raise ConfigError(msg)
        if self.mode is ExecutorMode.OPEN:
            if self.rate is None or self.rate <= 0:
                msg = "the open model needs a positive 'rate'"
                raise ConfigError(msg)
            if self.stages:
                msg = "'stages' only apply to the closed model"
                raise ConfigError(msg)
            if self.max_vus is not None and self.max_vus < 1:
                msg = f"max_vus must be >= 1, got {self.max_vus}"
                raise ConfigError(msg)
        elif not self.stages and self.vus < 1:
            msg = f"vus must be >= 1, got {self.vus}"
            raise ConfigError(msg)
        if not self.stages and self.duration <= 0:
            msg = f"duration must be positive, got {self.duration}"
            raise ConfigError(msg)
        low, high = self.think_time
        if low < 0 or high < low:
            msg = f"think_time must be 0 <= min <= max, got {self.think_time}"
            raise ConfigError(msg)
        if self.grace_period < 0:
            msg = f"grace_period must be non-negative, got {self.grace_period}"
            raise ConfigError(msg)
        if self.tick_interval <= 0:
            msg = f"tick_interval must be positive, got {self.tick_interval}"
            raise ConfigError(msg)
        # Validates the stage list eagerly
        self.build_pattern()

    @property
    def target(self) -> str:
        return self.request.url

    @property
    def run_duration(self) -> float:
        """Effective run length: the stage total, or ``duration``."""
        if self.stages:
            return sum(stage.duration for stage in self.stages)
        return self.duration

    @property
    def open_max_vus(self) -> int:
        """VU cap for the open model, defaulting to ``vus``."""
        return self.max_vus if self.max_vus is not None else max(self.vus, 1)

    def build_pattern(self) -> LoadPattern | None:
        """Return the closed-model pattern, None for the open model."""
        if self.mode is ExecutorMode.OPEN:
            return None
        if self.stages:
            return StagesPattern(self.stages)
        return ConstantPattern(users=self.vus)

    def describe_load(self) -> str:
        if self.mode is ExecutorMode.OPEN:
            return f"Open: {self.rate:g} it/s, max {self.open_max_vus} VUs, {self.duration:g}s"
        pattern = self.build_pattern()
        assert pattern is not None
        if self.stages:
            return pattern.describe()
        return f"{pattern.describe()} for {self.duration:g}s"


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML or JSON config file into a mapping.

    Raises:
        ConfigError: If the file is missing, unreadable, or not a mapping.
    """
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file {file_path}: {exc.strerror or exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"Config file {file_path} is not valid YAML/JSON: {exc}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Config file {file_path} must contain a mapping, got {type(data).__name__}"
        raise ConfigError(msg)
    return data


def load_test_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    *,
    defaults: EngineDefaults | None = None,
) -> TestConfig:
    """Build a TestConfig from an optional file plus overrides.

    Override keys use the config-file schema.  ``None`` values are ignored,
    ``thresholds`` are appended to the file's rules, and ``method``,
    ``headers`` and ``timeout`` go into the ``request`` section.  A
    ``vus`` or ``duration`` override replaces the file's ``stages``.

    Args:
        path: YAML/JSON config file, or None.
        overrides: Values that take precedence over the file (CLI flags).
        defaults: Engine fallbacks; read from the environment when None.

    Raises:
        ConfigError: If the resulting configuration is invalid.
    """
    data: dict[str, Any] = read_config_file(path) if path is not None else {}
    overrides = overrides or {}
    # As in k6, a flat vus/duration replaces the stage list
    if overrides.get("vus") is not None or overrides.get("duration") is not None:
        data.pop("stages", None)
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "thresholds":
            data["thresholds"] = [*_threshold_entries(data.get("thresholds")), *value]
        elif key in _REQUEST_KEYS:
            request = dict(_mapping(data.get("request") or {}, "request"))
            if key == "headers":
                request["headers"] = {**_mapping(request.get("headers") or {}, "headers"), **value}
            else:
                request[key] = value
            data["request"] = request
        else:
            data[key] = value
    return config_from_mapping(data, defaults=defaults)


def config_from_mapping(
    data: Mapping[str, Any],
    *,
    defaults: EngineDefaults | None = None,
) -> TestConfig:
    """Validate a config-file mapping and build a TestConfig.

    Raises:
        ConfigError: On unknown keys, wrong types, or invalid values.
    """
    defaults = defaults or load_defaults()
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        msg = f"Unknown config key(s): {', '.join(sorted(unknown))}"
        raise ConfigError(msg)

    target = data.get("target", data.get("url"))
    if not target:
        msg = "a target URL is required (config 'target' or --url)"
        raise ConfigError(msg)

    request_data = _mapping(data.get("request") or {}, "request")
    _reject_unknown(request_data, _REQUEST_KEYS, "request")
    request = _build_request(str(target), request_data, defaults.request_timeout)

    mode_name = str(data.get("executor", ExecutorMode.CLOSED.value)).lower()
    try:
        mode = ExecutorMode(mode_name)
    except ValueError:
        msg = f"executor must be 'closed' or 'open', got {data.get('executor')!r}"
        raise ConfigError(msg) from None

    return TestConfig(
        request=request,
        vus=_int(data.get("vus", 1), "vus"),
        duration=parse_duration(data.get("duration", 10.0), "duration"),
        stages=_build_stages(data.get("stages") or []),
        mode=mode,
        rate=_float_or_none(data.get("rate"), "rate"),
        max_vus=_int(data["max_vus"], "max_vus") if data.get("max_vus") is not None else None,
        think_time=_think_time(data.get("think_time", 0)),
        thresholds=_build_thresholds(data.get("thresholds")),
        setup=_build_steps(data.get("setup") or [], request, "setup"),
        teardown=_build_steps(data.get("teardown") or [], request, "teardown"),
        grace_period=parse_duration(
            data.get("grace_period", defaults.grace_period), "grace_period"
        ),
        tick_interval=parse_duration(
            data.get("tick_interval", defaults.tick_interval), "tick_interval"
        ),
        seed=_int(data["seed"], "seed") if data.get("seed") is not None else None,
    )


# ----------------------------------------------------------------------
# Section builders
# ----------------------------------------------------------------------


def _build_request(url: str, data: Mapping[str, Any], default_timeout: float) -> RequestTemplate:
    headers = {str(k): str(v) for k, v in _mapping(data.get("headers") or {}, "headers").items()}
    body = data.get("body")
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
        if not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = "application/json"
    return RequestTemplate(
        url=url,
        method=str(data.get("method", "GET")).upper(),
        headers=headers,
        body=None if body is None else str(body),
        timeout=parse_duration(data.get("timeout", default_timeout), "timeout"),
    )


def _build_stages(raw: Any) -> tuple[Stage, ...]:
    if not isinstance(raw, list):
        msg = f"stages must be a list, got {type(raw).__name__}"
        raise ConfigError(msg)
    stages: list[Stage] = []
    for i, entry in enumerate(raw):
        item = _mapping(entry, f"stages[{i}]")
        # k6 spells the stage target "target"
        vus = item.get("vus", item.get("target"))
        if vus is None or "duration" not in item:
            msg = f"stages[{i}] needs 'vus' and 'duration'"
            raise ConfigError(msg)
        stages.append(
            Stage(
                vus=_int(vus, f"stages[{i}].vus"),
                duration=parse_duration(item["duration"], f"stages[{i}].duration"),
            )
        )
    return tuple(stages)


def _threshold_entries(raw: Any) -> list[Any]:
    """Flatten list or k6 mapping form into a list of entries."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return list(raw)
    if isinstance(raw, dict):
        entries: list[Any] = []
        for metric, expressions in raw.items():
            items = expressions if isinstance(expressions, list) else [expressions]
            for item in items:
                if isinstance(item, dict):
                    # k6 object form: {threshold: "p(95)<900", abortOnFail: true}
                    expression = item.get("threshold")
                    abort = bool(item.get("abortOnFail", item.get("abort", False)))
                else:
                    expression, abort = item, False
                if not isinstance(expression, str):
                    msg = f"threshold for {metric!r} must be an expression string"
                    raise ConfigError(msg)
                entries.append({"expression": f"{metric}:{expression}", "abort": abort})
        return entries
    msg = f"thresholds must be a list or mapping, got {type(raw).__name__}"
    raise ConfigError(msg)


def _build_thresholds(raw: Any) -> tuple[ThresholdRule, ...]:
    rules: list[ThresholdRule] = []
    for i, entry in enumerate(_threshold_entries(raw)):
        if isinstance(entry, ThresholdRule):
            rules.append(entry)
        elif isinstance(entry, str):
            rules.append(ThresholdRule.parse(entry))
        elif isinstance(entry, dict) and "expression" in entry:
            rules.append(ThresholdRule.parse(entry["expression"], abort=bool(entry["abort"])))
        elif isinstance(entry, dict):
            missing = {"metric", "op", "value"} - set(entry)
            if missing:
                msg = f"thresholds[{i}] is missing {', '.join(sorted(missing))}"
                raise ConfigError(msg)
            value = _float_or_none(entry["value"], f"thresholds[{i}].value")
            assert value is not None
            rules.append(
                ThresholdRule(
                    metric=str(entry["metric"]),
                    op=str(entry["op"]),
                    value=value,
                    abort=bool(entry.get("abort", False)),
                )
            )
        else:
            msg = f"thresholds[{i}] must be an expression or a mapping"
            raise ConfigError(msg)
    return tuple(rules)


def _build_steps(raw: Any, base: RequestTemplate, name: str) -> tuple[SetupStep, ...]:
    if not isinstance(raw, list):
        msg = f"{name} must be a list of steps, got {type(raw).__name__}"
        raise ConfigError(msg)
    steps: list[SetupStep] = []
    for i, entry in enumerate(raw):
        item = _mapping(entry, f"{name}[{i}]")
        _reject_unknown(item, _STEP_KEYS, f"{name}[{i}]")
        url = str(item.get("url", base.url))
        _require_http_url(url, f"{name}[{i}].url")
        request = _build_request(url, item, base.timeout)
        expect = item.get("expect_status", [])
        codes = expect if isinstance(expect, list) else [expect]
        steps.append(
            SetupStep(
                request=request,
                expect_status=tuple(_int(c, f"{name}[{i}].expect_status") for c in codes),
            )
        )
    return tuple(steps)


def _think_time(raw: Any) -> ThinkTime:
    if isinstance(raw, list):
        if len(raw) != 2:
            msg = f"think_time must be a duration or [min, max], got {raw!r}"
            raise ConfigError(msg)
        return (parse_duration(raw[0], "think_time"), parse_duration(raw[1], "think_time"))
    seconds = parse_duration(raw, "think_time")
    return (seconds, seconds)


# ----------------------------------------------------------------------
# Scalar helpers
# ----------------------------------------------------------------------


def _mapping(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        msg = f"{name} must be a mapping, got {type(value).__name__}"
        raise ConfigError(msg)
    return value


def _reject_unknown(data: Mapping[str, Any], allowed: frozenset[str], name: str) -> None:
    unknown = set(data) - allowed
    if unknown:
        msg = f"Unknown key(s) in {name}: {', '.join(sorted(unknown))}"
        raise ConfigError(msg)


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        msg = f"{name} must be an integer, got {value!r}"
        raise ConfigError(msg)
    try:
        return int(value)
    except ValueError:
        msg = f"{name} must be an integer, got {value!r}"
        raise ConfigError(msg) from None


def _float_or_none(value: Any, name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"{name} must be a number, got {value!r}"
        raise ConfigError(msg)
    try:
        number = float(value)
    except (TypeError, ValueError):
        msg = f"{name} must be a number, got {value!r}"
        raise ConfigError(msg) from None
    if not math.isfinite(number):
        msg = f"{name} must be a finite number, got {value!r}"
        raise ConfigError(msg)
    return number


def _require_http_url(url: str, name: str) -> None:
    if not url.startswith(("http://", "https://")):
        msg = f"{name} must be an http:// or https:// URL, got {url!r}"
        raise ConfigError(msg)


__all__ = [
    "ExecutorMode",
    "SetupStep",
    "TestConfig",
    "config_from_mapping",
    "load_test_config",
    "read_config_file",
]
