"""Custom exceptions used across dbtrace."""
from __future__ import annotations


class DbTraceError(Exception):
    """Base exception for all dbtrace errors."""


class ConfigurationError(DbTraceError):
    """Raised when configuration or constructor arguments are invalid."""


class MalformedRecordError(DbTraceError):
    """Raised when a raw log record cannot be parsed."""


class LogSourceError(DbTraceError):
    """Raised when a log source cannot complete a read."""


class LogSourceTransportError(LogSourceError):
    """Raised for network or backend failures; callers may retry."""

    retryable = True


__all__ = [
    "DbTraceError",
    "ConfigurationError",
    "MalformedRecordError",
    "LogSourceError",
    "LogSourceTransportError",
]
