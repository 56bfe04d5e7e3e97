"""Structured error types raised by the engine.

Errors carry a machine-readable ``kind``, a plain message and a
``details`` mapping. Presentation is left to the caller.
"""

from pathlib import Path
from typing import Any


class TaskGraphError(Exception):
    """Base exception for engine errors."""

    kind = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured output."""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TaskGraphError):
    """Missing or invalid fields."""

    kind = "validation_error"

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        self.fields = list(fields or [])
        super().__init__(message, {"fields": self.fields})


class NotFoundError(TaskGraphError):
    """Unknown task or dependency id."""

    kind = "not_found"

    def __init__(self, task_id: str, tag: str | None = None, what: str = "Task") -> None:
        self.task_id = task_id
        self.tag = tag
        location = f" in tag '{tag}'" if tag else ""
        super().__init__(
            f"{what} '{task_id}' not found{location}",
            {"task_id": task_id, "tag": tag},
        )


class CircularDependencyError(TaskGraphError):
    """A dependency edge would close a cycle."""

    kind = "circular_dependency"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            f"Circular dependency detected: {' -> '.join(self.cycle)}",
            {"cycle": self.cycle},
        )


class DependentsExistError(TaskGraphError):
    """Delete refused because other tasks still depend on the task."""

    kind = "dependents_exist"

    def __init__(self, task_id: str, dependents: list[str]) -> None:
        self.task_id = task_id
        self.dependents = list(dependents)
        super().__init__(
            f"Task '{task_id}' has dependents: {', '.join(self.dependents)}",
            {"task_id": task_id, "dependents": self.dependents},
        )


class StorageError(TaskGraphError):
    """I/O or parse failure in the task store."""

    kind = "storage_error"

    def __init__(
        self,
        message: str,
        path: str | Path | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.path = str(path) if path is not None else None
        self.cause = cause
        details: dict[str, Any] = {"path": self.path}
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__(message, details)
