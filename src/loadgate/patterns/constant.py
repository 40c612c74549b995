"""Constant traffic pattern: a fixed number of looping virtual users."""

from __future__ import annotations

from loadgate._internal.errors import ConfigError
from loadgate.patterns.base import LoadPattern


class ConstantPattern(LoadPattern):
    """Maintain a fixed number of virtual users for the entire run.

    This is the closed model with a fixed VU count (k6 ``vus`` +
    ``duration``).

    Args:
        users: Number of concurrent virtual users.  Must be >= 1.

    Raises:
        ConfigError: If *users* < 1.
    """

    def __init__(self, users: int) -> None:
        if users < 1:
            msg = f"users must be >= 1, got {users}"
            raise ConfigError(msg)
        self._users = users

    def users_at(self, elapsed: float) -> int:  # noqa: ARG002
        return self._users

    def describe(self) -> str:
        return f"Constant: {self._users} users"
