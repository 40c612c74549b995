"""Custom exception hierarchy for LoadGate."""

from __future__ import annotations


class LoadGateError(Exception):
    """Base exception for all LoadGate errors.

    All custom exceptions in LoadGate inherit from this class, making it
    easy to catch any LoadGate-specific error with a single except clause.
    Per-request failures are never raised; they are recorded as
    ``RequestResult`` outcomes instead.
    """


class ConfigError(LoadGateError):
    """Raised when configuration is invalid or missing.

    Always raised before any virtual user starts.

    Examples:
        - The config file is missing or not valid YAML/JSON.
        - A duration string cannot be parsed.
        - A threshold references a metric that does not exist.
    """


class SetupError(LoadGateError):
    """Raised when a setup step fails.

    The run is aborted before any iteration happens.
    """


class InternalError(LoadGateError):
    """Raised when an engine invariant is violated.

    Examples:
        - A result is recorded after the aggregator was sealed.
        - The test session is run twice or makes an illegal state transition.
        - A virtual user crashed with an unexpected exception.
    """
