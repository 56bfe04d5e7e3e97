"""Tasks - models, persistence and lifecycle operations.

This module provides:
- Task and TaskCollection models (validated at load time)
- TaskStore (atomic, tag-partitioned JSON document)
- TaskManager (create, update, delete, list, stats, export)
"""

from taskgraph.tasks.models import (
    STATUS_TRANSITIONS,
    Assignee,
    AssigneeType,
    Task,
    TaskCollection,
    TaskMetadata,
    TaskPriority,
    TaskStatus,
    TaskType,
    is_valid_transition,
)
from taskgraph.tasks.store import TaskStore
from taskgraph.tasks.manager import TaskFilters, TaskManager, TaskStats

__all__ = [
    "STATUS_TRANSITIONS",
    "Assignee",
    "AssigneeType",
    "Task",
    "TaskCollection",
    "TaskFilters",
    "TaskManager",
    "TaskMetadata",
    "TaskPriority",
    "TaskStats",
    "TaskStatus",
    "TaskStore",
    "TaskType",
    "is_valid_transition",
]
