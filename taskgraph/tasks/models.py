"""Pydantic models for tasks and tag collections.

This module defines the strict internal task shape. Records read from
disk are validated into these models; the persisted JSON uses camelCase
keys (``estimatedHours``, ``dueDate``, ...) through field aliases.
"""

from collections import deque
from collections.abc import Iterator
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Read naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENUMS
# =============================================================================


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    REVIEW = "review"
    DONE = "done"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskType(str, Enum):
    """Kind of work a task represents."""

    FEATURE = "feature"
    BUG = "bug"
    ENHANCEMENT = "enhancement"
    DOCUMENTATION = "documentation"
    INFRASTRUCTURE = "infrastructure"
    RESEARCH = "research"
    MAINTENANCE = "maintenance"
    REFACTOR = "refactor"


class AssigneeType(str, Enum):
    """Kind of actor a task is assigned to."""

    AGENT = "agent"
    HUMAN = "human"
    TEAM = "team"


# Allowed moves when strict transitions are enabled.
STATUS_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.DEFERRED, TaskStatus.CANCELLED}
    ),
    TaskStatus.IN_PROGRESS: frozenset(
        {
            TaskStatus.BLOCKED,
            TaskStatus.REVIEW,
            TaskStatus.DONE,
            TaskStatus.DEFERRED,
            TaskStatus.CANCELLED,
        }
    ),
    TaskStatus.BLOCKED: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.DEFERRED, TaskStatus.CANCELLED}
    ),
    TaskStatus.REVIEW: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.DONE, TaskStatus.DEFERRED}
    ),
    TaskStatus.DONE: frozenset(),
    TaskStatus.DEFERRED: frozenset({TaskStatus.PENDING, TaskStatus.CANCELLED}),
    TaskStatus.CANCELLED: frozenset(),
}


def is_valid_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Check a status change against the transition table."""
    if current == target:
        return True
    return target in STATUS_TRANSITIONS.get(current, frozenset())


# =============================================================================
# TASK
# =============================================================================


class Assignee(BaseModel):
    """Reference to an external actor owning the work."""

    model_config = ConfigDict(extra="ignore")

    type: AssigneeType = Field(default=AssigneeType.AGENT)
    id: str | None = Field(default=None)
    name: str | None = Field(default=None)

    @property
    def display_name(self) -> str:
        """Name if present, otherwise id."""
        return self.name or self.id or "Unassigned"

    def matches(self, value: str) -> bool:
        """True if ``value`` equals the assignee id or name."""
        return value in (self.id, self.name)


class TaskMetadata(BaseModel):
    """Creation and modification timestamps.

    Unknown keys written by other tools are preserved.
    """

    model_config = ConfigDict(extra="allow")

    created: datetime = Field(default_factory=utcnow)
    modified: datetime = Field(default_factory=utcnow)

    @field_validator("created", "modified")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return as_utc(v)

    def touch(self) -> None:
        """Mark as modified now."""
        self.modified = utcnow()


class Task(BaseModel):
    """A unit of work in the dependency graph.

    Example:
        >>> task = Task(
        ...     id="3",
        ...     title="Create User model",
        ...     priority=TaskPriority.HIGH,
        ...     dependencies=["1"],
        ... )
    """

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        validate_assignment=True,
    )

    id: str = Field(..., min_length=1, description="Identifier unique within a tag")
    title: str = Field(..., min_length=1, max_length=200, description="Brief title")
    description: str = Field(default="", description="What the task is about")
    details: str | None = Field(default=None, description="Implementation notes")
    notes: str | None = Field(default=None)
    test_strategy: str | None = Field(default=None, alias="testStrategy")
    acceptance_criteria: list[str] = Field(default_factory=list, alias="acceptanceCriteria")

    status: TaskStatus = Field(default=TaskStatus.PENDING)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    type: TaskType = Field(default=TaskType.FEATURE)
    assignee: Assignee | None = Field(default=None)
    tags: list[str] = Field(default_factory=list, description="Labels")

    effort: int | None = Field(default=None, ge=1, le=5, description="Effort on a 1-5 scale")
    complexity: int | None = Field(default=None, ge=1, le=10)
    estimated_hours: float | None = Field(default=None, gt=0, alias="estimatedHours")
    actual_hours: float | None = Field(default=None, gt=0, alias="actualHours")

    due_date: datetime | None = Field(default=None, alias="dueDate")
    start_date: datetime | None = Field(default=None, alias="startDate")
    completed_date: datetime | None = Field(default=None, alias="completedDate")

    dependencies: list[str] = Field(
        default_factory=list,
        description="Task IDs this task depends on",
    )
    blocks: list[str] = Field(default_factory=list, description="Task IDs this task blocks")
    blocked_by: list[str] = Field(
        default_factory=list,
        alias="blockedBy",
        description="Task IDs blocking this task",
    )
    parent_id: str | None = Field(default=None, alias="parentId")
    subtasks: list["Task"] = Field(default_factory=list)
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)

    @field_validator("id", "parent_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Accept numeric ids from older files."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Reject blank titles."""
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @field_validator("due_date", "start_date", "completed_date")
    @classmethod
    def normalize_dates(cls, v: datetime | None) -> datetime | None:
        """Stored dates are always timezone-aware."""
        return as_utc(v)

    @field_validator("dependencies", "blocks", "blocked_by", mode="before")
    @classmethod
    def normalize_dependencies(cls, v: Any) -> Any:
        """Coerce ids to strings and drop duplicates, keeping order."""
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        seen: dict[str, None] = {}
        for item in v:
            if isinstance(item, int) and not isinstance(item, bool):
                item = str(item)
            seen.setdefault(item, None)
        return list(seen)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> Any:
        """Drop duplicate labels, keeping order."""
        if isinstance(v, list):
            return list(dict.fromkeys(v))
        return v

    @field_validator("assignee", mode="before")
    @classmethod
    def coerce_assignee(cls, v: Any) -> Any:
        """Accept a bare name as assignee."""
        if isinstance(v, str):
            return {"id": v, "name": v}
        return v

    @model_validator(mode="after")
    def check_self_dependency(self) -> "Task":
        """A task never depends on itself."""
        if self.id in self.dependencies:
            raise ValueError(f"task '{self.id}' lists itself as a dependency")
        return self

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def iter_subtree(self) -> Iterator["Task"]:
        """Yield this task and all descendants in pre-order."""
        stack: list[Task] = [self]
        while stack:
            task = stack.pop()
            yield task
            stack.extend(reversed(task.subtasks))


Task.model_rebuild()


# =============================================================================
# TAG COLLECTION
# =============================================================================


class TaskCollection(BaseModel):
    """All tasks of one tag.

    Tasks form a forest (subtasks owned by parents); the dependency graph
    spans every task in the forest by id.
    """

    model_config = ConfigDict(frozen=False)

    tag: str = Field(..., min_length=1)
    description: str = Field(default="")
    tasks: list[Task] = Field(default_factory=list)
    created: datetime = Field(default_factory=utcnow)

    @field_validator("created")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return as_utc(v)

    def iter_tasks(self) -> Iterator[Task]:
        """Yield every task, parents before their subtasks, in insertion order."""
        stack: list[Task] = list(reversed(self.tasks))
        while stack:
            task = stack.pop()
            yield task
            stack.extend(reversed(task.subtasks))

    def all_tasks(self) -> list[Task]:
        """Flattened list of every task."""
        return list(self.iter_tasks())

    def task_map(self) -> dict[str, Task]:
        """Task id -> Task over the whole forest."""
        return {task.id: task for task in self.iter_tasks()}

    def ids(self) -> set[str]:
        """All task ids in the tag."""
        return {task.id for task in self.iter_tasks()}

    def find(self, task_id: str) -> Task | None:
        """Find a task anywhere in the forest."""
        for task in self.iter_tasks():
            if task.id == task_id:
                return task
        return None

    def dependents_of(self, task_id: str) -> list[Task]:
        """Tasks that list ``task_id`` as a dependency."""
        return [task for task in self.iter_tasks() if task_id in task.dependencies]

    def adjacency(self) -> dict[str, list[str]]:
        """Task id -> dependency ids, in insertion order."""
        return {task.id: list(task.dependencies) for task in self.iter_tasks()}

    def link_blocker(self, task: Task, dep_id: str) -> None:
        """Mirror the edge ``task -> dep_id`` into blocks/blockedBy."""
        if dep_id not in task.blocked_by:
            task.blocked_by = [*task.blocked_by, dep_id]
        blocker = self.find(dep_id)
        if blocker is not None and task.id not in blocker.blocks:
            blocker.blocks = [*blocker.blocks, task.id]

    def unlink_blocker(self, task: Task, dep_id: str) -> None:
        """Drop the mirror of ``task -> dep_id``."""
        task.blocked_by = [b for b in task.blocked_by if b != dep_id]
        blocker = self.find(dep_id)
        if blocker is not None:
            blocker.blocks = [b for b in blocker.blocks if b != task.id]

    def remove(self, task_id: str) -> Task | None:
        """Detach a task (and its subtree) from the forest."""
        queue: deque[list[Task]] = deque([self.tasks])
        while queue:
            siblings = queue.popleft()
            for index, task in enumerate(siblings):
                if task.id == task_id:
                    return siblings.pop(index)
                if task.subtasks:
                    queue.append(task.subtasks)
        return None

    def next_id(self, parent_id: str | None = None) -> str:
        """Smallest free id at the top level or under ``parent_id``."""
        existing = self.ids()
        prefix = f"{parent_id}." if parent_id else ""
        n = 1
        while f"{prefix}{n}" in existing:
            n += 1
        return f"{prefix}{n}"

    def count(self) -> int:
        """Number of tasks including subtasks."""
        return sum(1 for _ in self.iter_tasks())

    def max_depth(self) -> int:
        """Nesting depth of the forest (0 when empty)."""
        depth = 0
        stack: list[tuple[Task, int]] = [(task, 1) for task in self.tasks]
        while stack:
            task, level = stack.pop()
            depth = max(depth, level)
            stack.extend((sub, level + 1) for sub in task.subtasks)
        return depth
