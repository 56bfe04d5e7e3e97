"""Core module - configuration, errors, logging and retry."""

from taskgraph.core.config import Settings, clear_settings_cache, get_settings
from taskgraph.core.exceptions import (
    CircularDependencyError,
    DependentsExistError,
    NotFoundError,
    StorageError,
    TaskGraphError,
    ValidationError,
)
from taskgraph.core.logging_setup import configure_logging
from taskgraph.core.retry import ErrorCategory, classify_error, retry_call, with_retry

__all__ = [
    "CircularDependencyError",
    "DependentsExistError",
    "ErrorCategory",
    "NotFoundError",
    "Settings",
    "StorageError",
    "TaskGraphError",
    "ValidationError",
    "classify_error",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "retry_call",
    "with_retry",
]
