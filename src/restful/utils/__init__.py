"""Utility functions and exceptions."""

from .cancellation import CancelScope
from .exceptions import (
    AuthenticationError,
    CanceledError,
    ConfigError,
    DisjointViolationError,
    EngineError,
    FilterConflictError,
    GoneError,
    HTTPStatusError,
    LocatorError,
    PollFailedError,
    ResourceExistsError,
    RetryExhaustedError,
    ShapingError,
    UnresolvedReferenceError,
)
from .locking import MutexRegistry, get_mutex_registry

__all__ = [
    "EngineError",
    "ConfigError",
    "UnresolvedReferenceError",
    "DisjointViolationError",
    "LocatorError",
    "ShapingError",
    "FilterConflictError",
    "HTTPStatusError",
    "RetryExhaustedError",
    "AuthenticationError",
    "GoneError",
    "ResourceExistsError",
    "PollFailedError",
    "CanceledError",
    "CancelScope",
    "MutexRegistry",
    "get_mutex_registry",
]
