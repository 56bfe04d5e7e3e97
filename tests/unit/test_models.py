"""Unit tests for task models and collections."""

import pytest
from pydantic import ValidationError

from taskgraph.tasks.models import (
    Assignee,
    Task,
    TaskCollection,
    TaskPriority,
    TaskStatus,
    TaskType,
    is_valid_transition,
)


class TestTask:
    """Tests for the Task model."""

    def test_defaults(self) -> None:
        """Test default values of a minimal task."""
        task = Task(id="1", title="Set up repo")

        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.MEDIUM
        assert task.type == TaskType.FEATURE
        assert task.dependencies == []
        assert task.subtasks == []
        assert task.metadata.created is not None

    def test_title_required(self) -> None:
        """Test that a missing or blank title is rejected."""
        with pytest.raises(ValidationError):
            Task(id="1")
        with pytest.raises(ValidationError):
            Task(id="1", title="   ")

    def test_title_max_length(self) -> None:
        """Test the 200 character title limit."""
        Task(id="1", title="x" * 200)
        with pytest.raises(ValidationError):
            Task(id="1", title="x" * 201)

    def test_self_dependency_rejected(self) -> None:
        """Test that a task cannot depend on itself."""
        with pytest.raises(ValidationError):
            Task(id="1", title="Loop", dependencies=["1"])

    def test_dependencies_normalized(self) -> None:
        """Test numeric ids are coerced and duplicates dropped in order."""
        task = Task(id="5", title="Merge", dependencies=[3, "1", "3", 2])

        assert task.dependencies == ["3", "1", "2"]

    def test_numeric_id_coerced(self) -> None:
        """Test numeric ids from older files become strings."""
        task = Task.model_validate({"id": 7, "title": "Old task"})

        assert task.id == "7"

    def test_invalid_enum_rejected(self) -> None:
        """Test unknown status values are rejected rather than defaulted."""
        with pytest.raises(ValidationError):
            Task.model_validate({"id": "1", "title": "Bad", "status": "finished"})

    def test_effort_range(self) -> None:
        """Test effort must be between 1 and 5."""
        Task(id="1", title="Ok", effort=5)
        with pytest.raises(ValidationError):
            Task(id="1", title="Too much", effort=6)

    def test_string_assignee(self) -> None:
        """Test a bare assignee name is accepted."""
        task = Task.model_validate({"id": "1", "title": "Review", "assignee": "alice"})

        assert isinstance(task.assignee, Assignee)
        assert task.assignee.matches("alice")
        assert task.assignee.display_name == "alice"

    def test_record_uses_camel_case(self) -> None:
        """Test the persisted shape uses camelCase aliases."""
        task = Task(
            id="1",
            title="Estimate",
            estimated_hours=3.5,
            test_strategy="unit tests",
            acceptance_criteria=["passes CI"],
        )

        record = task.to_record()

        assert record["estimatedHours"] == 3.5
        assert record["testStrategy"] == "unit tests"
        assert record["acceptanceCriteria"] == ["passes CI"]
        assert "estimated_hours" not in record
        assert "details" not in record  # None values are omitted

    def test_record_round_trip(self) -> None:
        """Test that a record validates back into an equal task."""
        task = Task(
            id="1",
            title="Round trip",
            priority=TaskPriority.HIGH,
            tags=["api", "api", "db"],
            subtasks=[Task(id="1.1", title="Child", parent_id="1")],
        )

        restored = Task.model_validate(task.to_record())

        assert restored == task
        assert restored.tags == ["api", "db"]
        assert restored.subtasks[0].parent_id == "1"

    def test_unknown_keys_ignored(self) -> None:
        """Test that keys written by other tools are ignored."""
        task = Task.model_validate({"id": "1", "title": "Extra", "skills": ["python"]})

        assert not hasattr(task, "skills")

    def test_iter_subtree(self) -> None:
        """Test pre-order traversal of a task's subtree."""
        task = Task(
            id="1",
            title="Root",
            subtasks=[
                Task(id="1.1", title="A", subtasks=[Task(id="1.1.1", title="A1")]),
                Task(id="1.2", title="B"),
            ],
        )

        assert [t.id for t in task.iter_subtree()] == ["1", "1.1", "1.1.1", "1.2"]


class TestTaskCollection:
    """Tests for TaskCollection helpers."""

    @pytest.fixture
    def collection(self) -> TaskCollection:
        return TaskCollection(
            tag="master",
            tasks=[
                Task(
                    id="1",
                    title="Parent",
                    subtasks=[Task(id="1.1", title="Child", parent_id="1")],
                ),
                Task(id="2", title="Second", dependencies=["1.1"]),
                Task(id="4", title="Fourth", dependencies=["2"]),
            ],
        )

    def test_iter_tasks_preorder(self, collection: TaskCollection) -> None:
        """Test parents come before subtasks, in insertion order."""
        assert [t.id for t in collection.iter_tasks()] == ["1", "1.1", "2", "4"]

    def test_find_nested(self, collection: TaskCollection) -> None:
        """Test finding a subtask."""
        assert collection.find("1.1").title == "Child"
        assert collection.find("9") is None

    def test_dependents_of(self, collection: TaskCollection) -> None:
        """Test reverse lookup of dependents."""
        assert [t.id for t in collection.dependents_of("1.1")] == ["2"]

    def test_next_id(self, collection: TaskCollection) -> None:
        """Test smallest free ids at the top level and under a parent."""
        assert collection.next_id() == "3"
        assert collection.next_id("1") == "1.2"
        assert collection.next_id("2") == "2.1"

    def test_remove_subtree(self, collection: TaskCollection) -> None:
        """Test detaching a nested task."""
        removed = collection.remove("1.1")

        assert removed.id == "1.1"
        assert collection.find("1.1") is None
        assert collection.count() == 3

    def test_count_and_depth(self, collection: TaskCollection) -> None:
        """Test recursive count and nesting depth."""
        assert collection.count() == 4
        assert collection.max_depth() == 2
        assert TaskCollection(tag="empty").max_depth() == 0


class TestStatusTransitions:
    """Tests for the strict transition table."""

    @pytest.mark.parametrize(
        ("current", "target", "allowed"),
        [
            (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, True),
            (TaskStatus.IN_PROGRESS, TaskStatus.DONE, True),
            (TaskStatus.REVIEW, TaskStatus.DONE, True),
            (TaskStatus.DEFERRED, TaskStatus.PENDING, True),
            (TaskStatus.PENDING, TaskStatus.DONE, False),
            (TaskStatus.DONE, TaskStatus.PENDING, False),
            (TaskStatus.CANCELLED, TaskStatus.IN_PROGRESS, False),
            (TaskStatus.DONE, TaskStatus.DONE, True),
        ],
    )
    def test_transition(self, current: TaskStatus, target: TaskStatus, allowed: bool) -> None:
        """Test individual transitions."""
        assert is_valid_transition(current, target) is allowed
