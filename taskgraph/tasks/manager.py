"""Task lifecycle operations.

Each public method is one acquire-load-mutate-save-release cycle on a
single tag. The tag is always passed explicitly; when omitted the
configured default tag is used, never a remembered "current" tag.
"""

import csv
import io
import json
from collections import Counter
from datetime import datetime
from typing import Any

import pydantic
from loguru import logger
from pydantic import BaseModel, Field

from taskgraph.core.config import Settings, get_settings
from taskgraph.core.exceptions import (
    CircularDependencyError,
    DependentsExistError,
    NotFoundError,
    ValidationError,
)
from taskgraph.graph.analytics import new_edge_cycle
from taskgraph.tasks.models import (
    Task,
    TaskCollection,
    TaskPriority,
    TaskStatus,
    TaskType,
    as_utc,
    is_valid_transition,
    utcnow,
)
from taskgraph.tasks.store import TaskStore

# Fields that only the engine itself may set.
PROTECTED_FIELDS = frozenset(
    {"id", "subtasks", "parent_id", "metadata", "blocks", "blocked_by"}
)

PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


def _field_names() -> dict[str, str]:
    """Map every accepted input key (name or alias) to its field name."""
    names: dict[str, str] = {}
    for name, info in Task.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


def _validation_error(exc: pydantic.ValidationError, context: str) -> ValidationError:
    """Convert a pydantic error into a ValidationError listing every field."""
    fields: list[str] = []
    problems: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "task"
        if loc not in fields:
            fields.append(loc)
        problems.append(f"{loc}: {err['msg']}")
    return ValidationError(f"{context}: {'; '.join(problems)}", fields=fields)


def id_sort_key(task_id: str) -> tuple[tuple[int, int | str], ...]:
    """Natural ordering for dotted ids ("2" < "10", "1.2" < "1.10")."""
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in task_id.split("."))


# =============================================================================
# QUERY MODELS
# =============================================================================


class TaskFilters(BaseModel):
    """Criteria for list_tasks. Unset criteria match everything."""

    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    type: TaskType | None = None
    assignee: str | None = Field(default=None, description="Assignee id or name")
    tags: list[str] = Field(default_factory=list, description="Match any label")
    search: str | None = Field(default=None, description="Case-insensitive substring")
    created_after: datetime | None = None
    created_before: datetime | None = None

    def matches(self, task: Task) -> bool:
        """Check a single task against every criterion."""
        if self.status and task.status != self.status:
            return False
        if self.priority and task.priority != self.priority:
            return False
        if self.type and task.type != self.type:
            return False
        if self.assignee and not (task.assignee and task.assignee.matches(self.assignee)):
            return False
        if self.tags and not set(self.tags) & set(task.tags):
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [task.title, task.description, task.details or "", task.notes or ""]
            if not any(needle in text.lower() for text in haystack):
                return False
        created = task.metadata.created
        if self.created_after and created < as_utc(self.created_after):
            return False
        if self.created_before and created > as_utc(self.created_before):
            return False
        return True


class TaskStats(BaseModel):
    """Counts over one tag."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    by_assignee: dict[str, int] = Field(default_factory=dict)
    completed: int = 0
    in_progress: int = 0
    blocked: int = 0
    overdue: int = 0

    @property
    def completion_rate(self) -> float:
        """Share of done tasks (0.0 for an empty tag)."""
        return self.completed / self.total if self.total else 0.0


# =============================================================================
# TASK MANAGER
# =============================================================================


class TaskManager:
    """
    Create, read, update and delete tasks within a tag.

    Example:
        >>> manager = TaskManager()
        >>> task = manager.create_task({"title": "Set up database"}, tag="master")
        >>> manager.update_task_status(task.id, "in-progress")
    """

    def __init__(
        self,
        store: TaskStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or (store.settings if store else get_settings())
        self.store = store or TaskStore(settings=self.settings)

    def resolve_tag(self, tag: str | None) -> str:
        """Explicit tag, or the configured default."""
        return tag or self.settings.default_tag

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_task(self, data: dict[str, Any], tag: str | None = None) -> Task:
        """
        Create a top-level task.

        Args:
            data: Task fields (snake_case names or camelCase aliases).
            tag: Target tag.

        Returns:
            The created task.

        Raises:
            ValidationError: If fields are missing/invalid or the id is taken.
            NotFoundError: If an initial dependency does not exist.
        """
        tag = self.resolve_tag(tag)
        with self.store.lock(tag):
            collection = self.store.load(tag)
            task = self._build_task(collection, data, tag, parent_id=None)
            collection.tasks.append(task)
            for dep_id in task.dependencies:
                collection.link_blocker(task, dep_id)
            self.store.save(tag, collection)

        logger.info(f"Created task {task.id} '{task.title}' in tag '{tag}'")
        return task

    def create_subtask(
        self,
        parent_id: str,
        data: dict[str, Any],
        tag: str | None = None,
    ) -> Task:
        """
        Create a subtask owned by ``parent_id``.

        Raises:
            NotFoundError: If the parent does not exist.
            ValidationError: If fields are missing or invalid.
        """
        tag = self.resolve_tag(tag)
        with self.store.lock(tag):
            collection = self.store.load(tag)
            parent = collection.find(parent_id)
            if parent is None:
                raise NotFoundError(parent_id, tag, what="Parent task")

            task = self._build_task(collection, data, tag, parent_id=parent_id)
            parent.subtasks.append(task)
            for dep_id in task.dependencies:
                collection.link_blocker(task, dep_id)
            parent.metadata.touch()
            self.store.save(tag, collection)

        logger.info(f"Created subtask {task.id} under {parent_id} in tag '{tag}'")
        return task

    def _build_task(
        self,
        collection: TaskCollection,
        data: dict[str, Any],
        tag: str,
        parent_id: str | None,
    ) -> Task:
        """Validate input and build a new task with an assigned id."""
        names = _field_names()
        record: dict[str, Any] = {}
        for key, value in data.items():
            name = names.get(key)
            if name is None:
                continue
            if name in PROTECTED_FIELDS - {"id"}:
                raise ValidationError(f"Field '{key}' cannot be set on create", fields=[key])
            record[name] = value

        existing = collection.ids()
        requested = record.get("id")
        if requested is not None:
            requested = str(requested)
            if parent_id:
                raise ValidationError("Subtask ids are assigned automatically", fields=["id"])
            if requested in existing:
                raise ValidationError(f"Task id '{requested}' already exists", fields=["id"])
            record["id"] = requested
        else:
            record["id"] = collection.next_id(parent_id)

        record["parent_id"] = parent_id
        for name in ("status", "priority", "type"):
            if record.get(name) is None:
                record.pop(name, None)

        try:
            task = Task.model_validate(record)
        except pydantic.ValidationError as e:
            raise _validation_error(e, "Invalid task") from e

        for dep_id in task.dependencies:
            if dep_id not in existing:
                raise NotFoundError(dep_id, tag, what="Dependency")

        return task

    # =========================================================================
    # READ
    # =========================================================================

    def get_task(self, task_id: str, tag: str | None = None) -> Task:
        """
        Find a task anywhere in the tag.

        Raises:
            NotFoundError: If the task does not exist.
        """
        tag = self.resolve_tag(tag)
        task = self.store.load(tag).find(task_id)
        if task is None:
            raise NotFoundError(task_id, tag)
        return task

    def list_tasks(
        self,
        filters: TaskFilters | None = None,
        tag: str | None = None,
    ) -> list[Task]:
        """
        Flattened tasks (parents before subtasks) matching ``filters``.

        Args:
            filters: Optional criteria.
            tag: Tag to list.

        Returns:
            Matching tasks in insertion order.
        """
        tag = self.resolve_tag(tag)
        filters = filters or TaskFilters()
        return [task for task in self.store.load(tag).iter_tasks() if filters.matches(task)]

    def get_stats(self, tag: str | None = None) -> TaskStats:
        """Aggregate counts for a tag."""
        tasks = self.store.load(self.resolve_tag(tag)).all_tasks()
        now = utcnow()

        return TaskStats(
            total=len(tasks),
            by_status=dict(Counter(t.status.value for t in tasks)),
            by_priority=dict(Counter(t.priority.value for t in tasks)),
            by_type=dict(Counter(t.type.value for t in tasks)),
            by_assignee=dict(
                Counter(t.assignee.display_name if t.assignee else "Unassigned" for t in tasks)
            ),
            completed=sum(1 for t in tasks if t.status == TaskStatus.DONE),
            in_progress=sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
            blocked=sum(1 for t in tasks if t.status == TaskStatus.BLOCKED),
            overdue=sum(
                1
                for t in tasks
                if t.due_date and as_utc(t.due_date) < now and t.status != TaskStatus.DONE
            ),
        )

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update_task(
        self,
        task_id: str,
        patch: dict[str, Any],
        tag: str | None = None,
    ) -> Task:
        """
        Apply a partial update.

        A patched ``dependencies`` list obeys the same rules as
        add_dependency: every id must exist, no self-reference, no cycle.

        Raises:
            NotFoundError: If the task or a new dependency does not exist.
            ValidationError: If a field is protected, unknown or invalid.
            CircularDependencyError: If new dependencies close a cycle.
        """
        tag = self.resolve_tag(tag)
        names = _field_names()
        changes: dict[str, Any] = {}
        for key, value in patch.items():
            name = names.get(key)
            if name is None:
                raise ValidationError(f"Unknown field '{key}'", fields=[key])
            if name in PROTECTED_FIELDS:
                raise ValidationError(f"Field '{key}' cannot be updated", fields=[key])
            changes[name] = value

        with self.store.lock(tag):
            collection = self.store.load(tag)
            task = collection.find(task_id)
            if task is None:
                raise NotFoundError(task_id, tag)

            record = task.model_dump()
            record.update(changes)
            try:
                updated = Task.model_validate(record)
            except pydantic.ValidationError as e:
                raise _validation_error(e, f"Invalid update for task '{task_id}'") from e

            if "dependencies" in changes:
                self._check_new_dependencies(collection, task, updated.dependencies, tag)
            if "status" in changes:
                self._check_transition(task, updated.status)
                if updated.status == TaskStatus.DONE and updated.completed_date is None:
                    changes["completed_date"] = utcnow()
                    updated.completed_date = changes["completed_date"]

            previous = list(task.dependencies)
            for name in changes:
                setattr(task, name, getattr(updated, name))
            if "dependencies" in changes:
                for dep_id in set(previous) - set(task.dependencies):
                    collection.unlink_blocker(task, dep_id)
                for dep_id in task.dependencies:
                    if dep_id not in previous:
                        collection.link_blocker(task, dep_id)
            task.metadata.touch()
            self.store.save(tag, collection)

        logger.info(f"Updated task {task_id} in tag '{tag}': {sorted(changes)}")
        return task

    def _check_new_dependencies(
        self,
        collection: TaskCollection,
        task: Task,
        dependencies: list[str],
        tag: str,
    ) -> None:
        """Validate a replacement dependency list for ``task``."""
        existing = collection.ids()
        for dep_id in dependencies:
            if dep_id not in existing:
                raise NotFoundError(dep_id, tag, what="Dependency")

        graph = collection.adjacency()
        graph[task.id] = list(dependencies)
        for dep_id in dependencies:
            if dep_id in task.dependencies:
                continue
            cycle = new_edge_cycle(graph, task.id, dep_id)
            if cycle:
                raise CircularDependencyError(cycle)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        tag: str | None = None,
    ) -> Task:
        """
        Change a task's status.

        Transitions are unrestricted unless strict_status_transitions is
        enabled. Moving to done stamps completedDate once.

        Raises:
            NotFoundError: If the task does not exist.
            ValidationError: On an unknown status or a disallowed transition.
        """
        tag = self.resolve_tag(tag)
        try:
            target = TaskStatus(status)
        except ValueError as e:
            valid = ", ".join(s.value for s in TaskStatus)
            raise ValidationError(
                f"Invalid status '{status}' (expected one of: {valid})",
                fields=["status"],
            ) from e

        with self.store.lock(tag):
            collection = self.store.load(tag)
            task = collection.find(task_id)
            if task is None:
                raise NotFoundError(task_id, tag)

            current = task.status
            if current == target:
                return task

            self._check_transition(task, target)
            task.status = target
            if target == TaskStatus.DONE and task.completed_date is None:
                task.completed_date = utcnow()
            task.metadata.touch()
            self.store.save(tag, collection)

        logger.info(f"Task {task_id} status: {current.value} -> {target.value}")
        return task

    def _check_transition(self, task: Task, target: TaskStatus) -> None:
        """Enforce the transition table when strict mode is on."""
        if not self.settings.strict_status_transitions:
            return
        if not is_valid_transition(task.status, target):
            raise ValidationError(
                f"Cannot move task '{task.id}' from {task.status.value} to {target.value}",
                fields=["status"],
            )

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete_task(
        self,
        task_id: str,
        tag: str | None = None,
        force: bool = False,
    ) -> list[str]:
        """
        Delete a task and its subtasks.

        Dependents are collected across the whole subtree. Without
        ``force`` any outside dependent refuses the delete and nothing is
        written; with ``force`` the removed ids are stripped from every
        remaining task.

        Returns:
            Ids removed (the task and its subtree).

        Raises:
            NotFoundError: If the task does not exist.
            DependentsExistError: If dependents exist and force is False.
        """
        tag = self.resolve_tag(tag)
        with self.store.lock(tag):
            collection = self.store.load(tag)
            task = collection.find(task_id)
            if task is None:
                raise NotFoundError(task_id, tag)

            removed = [t.id for t in task.iter_subtree()]
            removed_set = set(removed)
            dependents = [
                other.id
                for other in collection.iter_tasks()
                if other.id not in removed_set and removed_set & set(other.dependencies)
            ]

            if dependents and not force:
                raise DependentsExistError(task_id, dependents)

            collection.remove(task_id)
            for other in collection.iter_tasks():
                if removed_set & set(other.dependencies):
                    other.dependencies = [d for d in other.dependencies if d not in removed_set]
                    other.metadata.touch()
                if removed_set & set(other.blocks + other.blocked_by):
                    other.blocks = [b for b in other.blocks if b not in removed_set]
                    other.blocked_by = [b for b in other.blocked_by if b not in removed_set]

            if task.parent_id:
                parent = collection.find(task.parent_id)
                if parent is not None:
                    parent.metadata.touch()

            self.store.save(tag, collection)

        if dependents:
            logger.warning(f"Force-deleted task {task_id}; cleaned dependents {dependents}")
        logger.info(f"Deleted {len(removed)} task(s) from tag '{tag}': {removed}")
        return removed

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export_tasks(self, fmt: str = "json", tag: str | None = None) -> str:
        """
        Serialize a tag's tasks.

        Args:
            fmt: ``json``, ``csv`` or ``markdown``.
            tag: Tag to export.

        Raises:
            ValidationError: On an unsupported format.
        """
        exporters = {
            "json": self._export_json,
            "csv": self._export_csv,
            "markdown": self._export_markdown,
        }
        exporter = exporters.get(fmt)
        if exporter is None:
            raise ValidationError(
                f"Unsupported export format '{fmt}' (expected json, csv or markdown)",
                fields=["format"],
            )
        collection = self.store.load(self.resolve_tag(tag))
        return exporter(collection)

    @staticmethod
    def _export_json(collection: TaskCollection) -> str:
        payload = {
            "tag": collection.tag,
            "exportedAt": utcnow().isoformat(),
            "tasks": [task.to_record() for task in collection.tasks],
        }
        return json.dumps(payload, indent=2)

    @staticmethod
    def _export_csv(collection: TaskCollection) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(
            ["id", "title", "status", "priority", "type", "assignee", "effort",
             "dependencies", "parentId", "tags"]
        )
        for task in collection.iter_tasks():
            writer.writerow(
                [
                    task.id,
                    task.title,
                    task.status.value,
                    task.priority.value,
                    task.type.value,
                    task.assignee.display_name if task.assignee else "",
                    task.effort or "",
                    ";".join(task.dependencies),
                    task.parent_id or "",
                    ";".join(task.tags),
                ]
            )
        return buffer.getvalue()

    @staticmethod
    def _export_markdown(collection: TaskCollection) -> str:
        lines = [f"# Tasks: {collection.tag}", ""]
        tasks = collection.all_tasks()
        for status in TaskStatus:
            group = [t for t in tasks if t.status == status]
            if not group:
                continue
            lines.append(f"## {status.value} ({len(group)})")
            lines.append("")
            for task in group:
                box = "x" if status == TaskStatus.DONE else " "
                line = f"- [{box}] **{task.id}** {task.title} ({task.priority.value})"
                if task.dependencies:
                    line += f" - depends on: {', '.join(task.dependencies)}"
                lines.append(line)
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"
