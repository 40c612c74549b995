"""Closed-model traffic patterns for LoadGate.

A pattern defines how the target virtual-user count changes over time.
All patterns implement :class:`LoadPattern` and yield
``(elapsed_seconds, target_concurrency)`` tuples via
:meth:`LoadPattern.iter_concurrency`.
"""

from __future__ import annotations

from loadgate.patterns.base import LoadPattern
from loadgate.patterns.constant import ConstantPattern
from loadgate.patterns.stages import Stage, StagesPattern

__all__ = [
    "ConstantPattern",
    "LoadPattern",
    "Stage",
    "StagesPattern",
]
