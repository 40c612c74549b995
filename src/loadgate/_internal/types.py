"""Shared type aliases for LoadGate."""

from __future__ import annotations

# HTTP headers dictionary.
Headers = dict[str, str]

# Think time range (min_seconds, max_seconds).
ThinkTime = tuple[float, float]

# Threshold comparison operators, as written in expressions and config files.
Operator = str
