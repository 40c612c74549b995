"""Logging setup for LoadGate.

All log output goes to stderr so the JSON report written to stdout stays
machine-readable.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_ROOT_NAME = "loadgate"

# LogRecord attributes that are not user-supplied ``extra`` fields.
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _JsonFormatter(logging.Formatter):
    """One-line JSON log formatter.

    Emits ``timestamp``, ``level``, ``logger`` and ``message`` plus any
    ``extra={...}`` fields attached to the record (e.g. ``state``, ``vus``).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(
        "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the ``loadgate`` root logger.

    Calling this again reuses the existing stderr handler and only updates
    its level and formatter, so repeated runs in one process (tests, the
    CLI) never duplicate output.

    Args:
        level: Logging level (e.g. ``logging.DEBUG``). Defaults to INFO.
        json_format: Emit one-line JSON records instead of plain text.

    Returns:
        The configured ``loadgate`` logger.
    """
    logger = logging.getLogger(_ROOT_NAME)
    logger.setLevel(level)

    handler = next(
        (h for h in logger.handlers if getattr(h, "_loadgate_handler", False)),
        None,
    )
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler._loadgate_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    handler.setLevel(level)
    handler.setFormatter(_make_formatter(json_format))

    # Keep records away from the root logger to avoid duplicate output
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``loadgate`` namespace.

    Args:
        name: Dotted suffix, e.g. ``"engine.pool"`` gives
            ``loadgate.engine.pool``.

    Returns:
        The child logger.
    """
    return logging.getLogger(f"{_ROOT_NAME}.{name}")
