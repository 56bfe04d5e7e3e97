"""Durable storage for tagged task collections.

One JSON document per project holds every tag::

    {"tags": {"master": {"name": ..., "tasks": [...], "metadata": {...}}},
     "currentTag": "master",
     "metadata": {...}}

Writes are atomic (temp file in the same directory + ``os.replace``) so
a crash mid-write never leaves a half-written document.
"""

import hashlib
import json
import os
import shutil
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pydantic
from loguru import logger

from taskgraph.core.config import Settings, get_settings
from taskgraph.core.exceptions import NotFoundError, StorageError, ValidationError
from taskgraph.core.retry import retry_call
from taskgraph.tasks.models import Task, TaskCollection, utcnow

SCHEMA_VERSION = "1.0.0"

# Locks are shared by every store pointing at the same file.
_registry_lock = threading.Lock()
_tag_locks: dict[tuple[str, str], threading.RLock] = {}
_document_locks: dict[str, threading.RLock] = {}


def _tag_lock(path: Path, tag: str) -> threading.RLock:
    key = (str(path.resolve()), tag)
    with _registry_lock:
        if key not in _tag_locks:
            _tag_locks[key] = threading.RLock()
        return _tag_locks[key]


def _document_lock(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _registry_lock:
        if key not in _document_locks:
            _document_locks[key] = threading.RLock()
        return _document_locks[key]


def _raw_tasks(record: Any) -> list[Any]:
    """Task records of a raw tag, or an empty list when the tag is malformed."""
    if not isinstance(record, dict):
        return []
    tasks = record.get("tasks")
    return tasks if isinstance(tasks, list) else []


def _raw_count(records: list[Any]) -> tuple[int, int]:
    """Count raw task records and their nesting depth.

    Entries that are not objects are skipped.
    """
    total = 0
    depth = 0
    stack = [(record, 1) for record in records]
    while stack:
        record, level = stack.pop()
        if not isinstance(record, dict):
            continue
        total += 1
        depth = max(depth, level)
        subtasks = record.get("subtasks")
        if isinstance(subtasks, list):
            stack.extend((sub, level + 1) for sub in subtasks)
    return total, depth


def _format_pydantic_error(exc: pydantic.ValidationError) -> tuple[str, list[str]]:
    fields = []
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<record>"
        fields.append(loc)
        messages.append(f"{loc}: {err['msg']}")
    return "; ".join(messages), fields


class TaskStore:
    """
    Load and save task collections by tag.

    Example:
        >>> store = TaskStore(Path(".taskgraph/tasks.json"))
        >>> with store.lock("master"):
        ...     tasks = store.load("master")
        ...     store.save("master", tasks)
    """

    def __init__(
        self,
        path: str | Path | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            path: Tasks document path (defaults to settings.tasks_path).
            settings: Optional settings override.
        """
        self.settings = settings or get_settings()
        self.path = Path(path) if path else self.settings.tasks_path
        self.backup_dir = self.path.parent / "backups"

    # =========================================================================
    # LOCKING
    # =========================================================================

    @contextmanager
    def lock(self, tag: str) -> Iterator[None]:
        """
        Hold the exclusive lock for ``tag`` for one load-mutate-save cycle.

        The lock is re-entrant within a thread and released on every exit
        path, including errors.

        Raises:
            StorageError: If the lock is not acquired within lock_timeout.
        """
        lock = _tag_lock(self.path, tag)
        if not lock.acquire(timeout=self.settings.lock_timeout):
            raise StorageError(
                f"Timed out waiting for lock on tag '{tag}'",
                path=self.path,
            )
        try:
            yield
        finally:
            lock.release()

    # =========================================================================
    # DOCUMENT I/O
    # =========================================================================

    def exists(self) -> bool:
        """True if the tasks document exists on disk."""
        return self.path.exists()

    def checksum(self) -> str | None:
        """SHA-256 of the persisted bytes, or None if absent."""
        try:
            data = self._read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}", path=self.path, cause=e) from e
        return hashlib.sha256(data).hexdigest()

    def load_document(self) -> dict[str, Any]:
        """
        Read the raw document.

        An absent file yields an empty document; an unreadable or
        unparsable file raises StorageError.
        """
        try:
            data = self._read_bytes()
        except FileNotFoundError:
            logger.debug(f"No tasks file at {self.path}, starting empty")
            return self._empty_document()
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}", path=self.path, cause=e) from e

        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(
                f"Tasks file {self.path} is corrupt",
                path=self.path,
                cause=e,
            ) from e

        if not isinstance(document, dict):
            raise StorageError(
                f"Tasks file {self.path} is not a JSON object",
                path=self.path,
            )

        if "tags" not in document and "tasks" in document:
            document = self._migrate_legacy(document)

        tags = document.setdefault("tags", {})
        if not isinstance(tags, dict):
            raise StorageError(f"'tags' in {self.path} must be an object", path=self.path)

        return document

    def list_tags(self) -> list[str]:
        """Names of all tags in the document."""
        return list(self.load_document()["tags"].keys())

    # =========================================================================
    # TAG COLLECTIONS
    # =========================================================================

    def load(self, tag: str) -> TaskCollection:
        """
        Load every task of ``tag``.

        Args:
            tag: Tag name.

        Returns:
            TaskCollection (empty if the file or tag is absent).

        Raises:
            StorageError: If the file cannot be read or parsed.
            ValidationError: If a task record is malformed.
        """
        document = self.load_document()
        record = document["tags"].get(tag)
        if record is None:
            return TaskCollection(tag=tag)

        if not isinstance(record, dict) or not isinstance(record.get("tasks", []), list):
            raise StorageError(f"Tag '{tag}' in {self.path} is malformed", path=self.path)

        tasks: list[Task] = []
        for index, raw in enumerate(record.get("tasks", [])):
            try:
                tasks.append(Task.model_validate(raw))
            except pydantic.ValidationError as e:
                detail, fields = _format_pydantic_error(e)
                raise ValidationError(
                    f"Malformed task record {index} in tag '{tag}': {detail}",
                    fields=fields,
                ) from e

        fields: dict[str, Any] = {
            "tag": tag,
            "description": record.get("description") or "",
            "tasks": tasks,
        }
        metadata = record.get("metadata")
        created = metadata.get("created") if isinstance(metadata, dict) else None
        if created:
            fields["created"] = created
        try:
            collection = TaskCollection(**fields)
        except pydantic.ValidationError as e:
            detail, names = _format_pydantic_error(e)
            raise ValidationError(f"Malformed tag '{tag}': {detail}", fields=names) from e
        self._check_structure(collection)

        logger.debug(f"Loaded {collection.count()} tasks from tag '{tag}'")
        return collection

    def save(self, tag: str, collection: TaskCollection) -> None:
        """
        Persist ``collection`` as tag ``tag``, keeping other tags intact.

        Raises:
            StorageError: If the document cannot be written.
        """
        with _document_lock(self.path):
            document = self.load_document()
            now = utcnow().isoformat()

            records = [task.to_record() for task in collection.tasks]
            task_count, _ = _raw_count(records)
            document["tags"][tag] = {
                "name": tag,
                "description": collection.description,
                "tasks": records,
                "metadata": {
                    "created": collection.created.isoformat(),
                    "modified": now,
                    "taskCount": task_count,
                },
            }
            document.setdefault("currentTag", self.settings.default_tag)
            self._refresh_metadata(document, now)

            self._backup()
            self._write_document(document)

        logger.debug(f"Saved {task_count} tasks to tag '{tag}'")

    def create_tag(self, name: str, description: str = "") -> None:
        """Add an empty tag.

        Raises:
            ValidationError: If the tag already exists or the name is blank.
        """
        if not name or not name.strip():
            raise ValidationError("Tag name must not be blank", fields=["name"])

        with _document_lock(self.path):
            document = self.load_document()
            if name in document["tags"]:
                raise ValidationError(f"Tag '{name}' already exists", fields=["name"])

            now = utcnow().isoformat()
            document["tags"][name] = {
                "name": name,
                "description": description,
                "tasks": [],
                "metadata": {"created": now, "modified": now, "taskCount": 0},
            }
            document.setdefault("currentTag", self.settings.default_tag)
            self._refresh_metadata(document, now)
            self._backup()
            self._write_document(document)

        logger.info(f"Created tag '{name}'")

    def delete_tag(self, name: str) -> int:
        """Remove a tag and all of its tasks.

        Returns:
            Number of tasks removed.

        Raises:
            ValidationError: For the default tag.
            NotFoundError: If the tag does not exist.
        """
        if name == self.settings.default_tag:
            raise ValidationError(f"Cannot delete the default tag '{name}'", fields=["name"])

        with _document_lock(self.path):
            document = self.load_document()
            if name not in document["tags"]:
                raise NotFoundError(name, what="Tag")

            removed = document["tags"].pop(name)
            count, _ = _raw_count(_raw_tasks(removed))
            if document.get("currentTag") == name:
                document["currentTag"] = self.settings.default_tag
            self._refresh_metadata(document, utcnow().isoformat())
            self._backup()
            self._write_document(document)

        logger.info(f"Deleted tag '{name}' ({count} tasks)")
        return count

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _read_bytes(self) -> bytes:
        return retry_call(
            self.path.read_bytes,
            attempts=self.settings.io_retry_attempts,
            base_delay=self.settings.io_retry_base_delay,
        )

    def _write_document(self, document: dict[str, Any]) -> None:
        """Write to a temp file in the target directory, then rename over."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".tasks_",
                suffix=".json.tmp",
            )
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}", path=self.path, cause=e) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())

            retry_call(
                os.replace,
                temp_path,
                self.path,
                attempts=self.settings.io_retry_attempts,
                base_delay=self.settings.io_retry_base_delay,
            )
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StorageError(f"Failed to write {self.path}", path=self.path, cause=e) from e

    def _backup(self) -> None:
        """Copy the current file into backups/, keeping the newest N."""
        retention = self.settings.backup_retention
        if retention <= 0 or not self.path.exists():
            return

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            stamp = utcnow().strftime("%Y%m%dT%H%M%S%fZ")
            shutil.copy2(self.path, self.backup_dir / f"tasks-{stamp}.json")

            backups = sorted(self.backup_dir.glob("tasks-*.json"), reverse=True)
            for old in backups[retention:]:
                old.unlink()
        except OSError as e:
            logger.warning(f"Failed to create backup of {self.path}: {e}")

    def _empty_document(self) -> dict[str, Any]:
        now = utcnow().isoformat()
        return {
            "tags": {},
            "currentTag": self.settings.default_tag,
            "metadata": {
                "version": SCHEMA_VERSION,
                "created": now,
                "modified": now,
                "totalTasks": 0,
                "maxDepth": 0,
            },
        }

    def _migrate_legacy(self, document: dict[str, Any]) -> dict[str, Any]:
        """Move a flat ``{"tasks": [...]}`` file into the default tag."""
        migrated = self._empty_document()
        tag = self.settings.default_tag
        tasks = document.get("tasks") or []
        migrated["tags"][tag] = {
            "name": tag,
            "description": "",
            "tasks": tasks,
            "metadata": {},
        }
        logger.info(f"Migrated legacy tasks file ({len(tasks)} tasks) into tag '{tag}'")
        return migrated

    @staticmethod
    def _refresh_metadata(document: dict[str, Any], now: str) -> None:
        total = 0
        max_depth = 0
        for name, record in document["tags"].items():
            if not isinstance(record, dict):
                logger.warning(f"Skipping malformed tag '{name}' in metadata totals")
            count, depth = _raw_count(_raw_tasks(record))
            total += count
            max_depth = max(max_depth, depth)

        metadata = document.setdefault("metadata", {})
        metadata.setdefault("version", SCHEMA_VERSION)
        metadata.setdefault("created", now)
        metadata["modified"] = now
        metadata["totalTasks"] = total
        metadata["maxDepth"] = max_depth

    @staticmethod
    def _check_structure(collection: TaskCollection) -> None:
        """Reject duplicate ids and parent links that disagree with nesting."""
        seen: set[str] = set()
        stack: list[tuple[Task, str | None]] = [(task, None) for task in collection.tasks]
        while stack:
            task, parent = stack.pop()
            if task.id in seen:
                raise ValidationError(
                    f"Duplicate task id '{task.id}' in tag '{collection.tag}'",
                    fields=["id"],
                )
            seen.add(task.id)

            if parent is not None and task.parent_id is None:
                task.parent_id = parent
            elif task.parent_id != parent:
                raise ValidationError(
                    f"Task '{task.id}' claims parent '{task.parent_id}' "
                    f"but is nested under '{parent}'",
                    fields=["parentId"],
                )
            stack.extend((sub, task.id) for sub in task.subtasks)
