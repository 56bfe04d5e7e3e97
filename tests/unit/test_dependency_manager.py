"""Unit tests for DependencyGraphManager."""

import pytest

from taskgraph.core.exceptions import (
    CircularDependencyError,
    NotFoundError,
    ValidationError,
)
from taskgraph.graph.dependency_manager import MISSING_TITLE, DependencyGraphManager


class TestAddRemove:
    """Tests for edge mutation."""

    def test_cycle_rejected_and_nothing_written(self, graph: DependencyGraphManager, diamond) -> None:
        """Test that closing A -> D -> C -> A is refused without a write."""
        before = graph.store.checksum()

        with pytest.raises(CircularDependencyError) as exc_info:
            graph.add_dependency("A", "D")

        assert exc_info.value.cycle == ["A", "D", "C", "A"]
        assert graph.store.checksum() == before
        assert graph.tasks.get_task("A").dependencies == []
        assert graph.tasks.get_task("D").blocks == []

    def test_add_new_edge(self, graph: DependencyGraphManager, diamond) -> None:
        """Test adding an acyclic edge persists it."""
        graph.add_dependency("D", "A")

        assert graph.tasks.get_task("D").dependencies == ["C", "A"]

    def test_edges_mirrored_in_blocking_fields(self, graph: DependencyGraphManager, diamond) -> None:
        """Test add and remove keep blocks/blockedBy in step."""
        graph.add_dependency("D", "A")

        assert graph.tasks.get_task("A").blocks == ["B", "C", "D"]
        assert graph.tasks.get_task("D").blocked_by == ["C", "A"]

        graph.remove_dependency("D", "A")

        assert graph.tasks.get_task("A").blocks == ["B", "C"]
        assert graph.tasks.get_task("D").blocked_by == ["C"]

    def test_add_existing_is_noop(self, graph: DependencyGraphManager, diamond) -> None:
        """Test that re-adding an edge writes nothing."""
        before = graph.store.checksum()

        task = graph.add_dependency("B", "A")

        assert task.dependencies == ["A"]
        assert graph.store.checksum() == before

    def test_self_dependency(self, graph: DependencyGraphManager, diamond) -> None:
        """Test that a task cannot depend on itself."""
        with pytest.raises(ValidationError):
            graph.add_dependency("A", "A")

    def test_unknown_ids(self, graph: DependencyGraphManager, diamond) -> None:
        """Test that both endpoints must exist."""
        with pytest.raises(NotFoundError):
            graph.add_dependency("Z", "A")
        with pytest.raises(NotFoundError):
            graph.add_dependency("A", "Z")

    def test_remove_missing_edge(self, graph: DependencyGraphManager, diamond) -> None:
        """Test removing an absent edge returns False and writes nothing."""
        before = graph.store.checksum()

        assert graph.remove_dependency("A", "D") is False
        assert graph.store.checksum() == before

    def test_remove_then_add_restores(self, graph: DependencyGraphManager, diamond) -> None:
        """Test remove followed by add gives back the same dependencies."""
        assert graph.remove_dependency("D", "C") is True
        assert graph.tasks.get_task("D").dependencies == []

        graph.add_dependency("D", "C")
        assert graph.tasks.get_task("D").dependencies == ["C"]

        graph.remove_dependency("C", "A")
        graph.add_dependency("C", "A")
        assert set(graph.tasks.get_task("C").dependencies) == {"A", "B"}

    def test_older_cycle_does_not_block_unrelated_edge(
        self, graph: DependencyGraphManager, write_raw
    ) -> None:
        """Test that only cycles through the new edge cause rejection."""
        write_raw(
            [
                {"id": "1", "title": "Loop one", "dependencies": ["2"]},
                {"id": "2", "title": "Loop two", "dependencies": ["1"]},
                {"id": "3", "title": "Free"},
                {"id": "4", "title": "Also free"},
            ]
        )

        graph.add_dependency("4", "3")

        assert graph.tasks.get_task("4").dependencies == ["3"]


class TestValidate:
    """Tests for validate_dependencies."""

    def test_diamond_is_valid(self, graph: DependencyGraphManager, diamond) -> None:
        """Test the diamond has no errors but a redundant edge warning."""
        result = graph.validate_dependencies()

        assert result.is_valid
        assert result.total_tasks == 4
        assert result.total_dependencies == 4
        redundant = [w for w in result.warnings if w.type == "redundant_dependency"]
        assert len(redundant) == 1
        assert redundant[0].affected_tasks == ["C", "A"]

    def test_reports_every_cycle(self, graph: DependencyGraphManager, write_raw) -> None:
        """Test both cycles through A -> D are reported."""
        write_raw(
            [
                {"id": "A", "title": "Design schema", "dependencies": ["D"]},
                {"id": "B", "title": "Write models", "dependencies": ["A"]},
                {"id": "C", "title": "Build API", "dependencies": ["A", "B"]},
                {"id": "D", "title": "Ship release", "dependencies": ["C"]},
            ]
        )

        result = graph.validate_dependencies()

        assert not result.is_valid
        assert ["A", "D", "C", "A"] in result.cycles
        assert ["A", "D", "C", "B", "A"] in result.cycles
        assert all(e.type == "circular_dependency" for e in result.errors)

    def test_missing_dependency(self, graph: DependencyGraphManager, write_raw) -> None:
        """Test dangling references are errors."""
        write_raw([{"id": "1", "title": "Dangling", "dependencies": ["99"]}])

        result = graph.validate_dependencies()

        assert not result.is_valid
        assert result.errors[0].type == "missing_dependency"
        assert result.errors[0].affected_tasks == ["1", "99"]

    def test_cancelled_and_inconsistent(self, graph: DependencyGraphManager, diamond) -> None:
        """Test status-based warnings."""
        graph.tasks.update_task_status("A", "cancelled")
        graph.tasks.update_task_status("D", "done")

        result = graph.validate_dependencies()
        types = [w.type for w in result.warnings]

        assert result.is_valid
        assert types.count("cancelled_dependency") == 2
        assert "status_inconsistency" in types

    def test_bottleneck_and_long_chain(self, manager, graph: DependencyGraphManager) -> None:
        """Test structural warnings on a hub and a long chain."""
        manager.create_task({"id": "hub", "title": "Hub"})
        for name in ("x", "y", "z"):
            manager.create_task({"id": name, "title": name.upper(), "dependencies": ["hub"]})
        previous = "z"
        for name in ("c1", "c2", "c3"):
            manager.create_task({"id": name, "title": name, "dependencies": [previous]})
            previous = name

        types = [w.type for w in graph.validate_dependencies().warnings]

        assert "bottleneck" in types
        assert "long_chain" in types

    def test_too_many_dependencies(self, manager, graph: DependencyGraphManager) -> None:
        """Test the dependency count warning."""
        ids = [manager.create_task({"title": f"Base {i}"}).id for i in range(11)]
        manager.create_task({"title": "Wide", "dependencies": ids})

        types = [w.type for w in graph.validate_dependencies().warnings]

        assert "too_many_dependencies" in types

    def test_to_dict(self, graph: DependencyGraphManager, diamond) -> None:
        """Test the serialized result carries camelCase keys and isValid."""
        data = graph.validate_dependencies().to_dict()

        assert data["isValid"] is True
        assert data["totalTasks"] == 4
        assert "affectedTasks" in data["warnings"][0]


class TestQueries:
    """Tests for neighbour, order and impact queries."""

    def test_neighbours(self, graph: DependencyGraphManager, diamond) -> None:
        """Test direct dependencies and dependents."""
        assert [r.id for r in graph.get_dependencies("C")] == ["A", "B"]
        assert [r.id for r in graph.get_dependents("A")] == ["B", "C"]
        assert graph.get_dependents("D") == []

    def test_dangling_placeholder(self, graph: DependencyGraphManager, write_raw) -> None:
        """Test a dangling dependency is shown as a placeholder."""
        write_raw([{"id": "1", "title": "Dangling", "dependencies": ["99"]}])

        [ref] = graph.get_dependencies("1")

        assert ref.id == "99"
        assert ref.missing
        assert ref.title == MISSING_TITLE

    def test_unknown_task(self, graph: DependencyGraphManager, diamond) -> None:
        """Test neighbour queries on unknown ids are empty and impact raises."""
        assert graph.get_dependencies("Z") == []
        assert graph.get_dependents("Z") == []
        assert graph.get_blocked_tasks("Z") == []
        assert graph.get_blocking_tasks("Z") == []
        with pytest.raises(NotFoundError):
            graph.analyze_task_impact("Z")

    def test_blocked_and_blocking(self, graph: DependencyGraphManager, diamond) -> None:
        """Test the blocks/blockedBy mirror of the diamond."""
        assert [r.id for r in graph.get_blocked_tasks("A")] == ["B", "C"]
        assert [r.id for r in graph.get_blocking_tasks("C")] == ["A", "B"]

    def test_blocking_from_file(self, graph: DependencyGraphManager, write_raw) -> None:
        """Test one-sided blocks/blockedBy records are read from both ends."""
        write_raw(
            [
                {"id": "1", "title": "Blocker", "blocks": ["2"]},
                {"id": "2", "title": "Blocked"},
                {"id": "3", "title": "Waits", "blockedBy": ["1", "9"]},
            ]
        )

        assert [r.id for r in graph.get_blocked_tasks("1")] == ["2", "3"]
        assert [r.id for r in graph.get_blocking_tasks("2")] == ["1"]
        assert [(r.id, r.missing) for r in graph.get_blocking_tasks("3")] == [
            ("1", False),
            ("9", True),
        ]

    def test_dependency_chain(self, graph: DependencyGraphManager, diamond) -> None:
        """Test the upstream closure edges of D."""
        edges = {(e.source, e.target) for e in graph.get_dependency_chain("D")}

        assert edges == {("C", "D"), ("A", "C"), ("B", "C"), ("A", "B")}

    def test_topological_order(self, graph: DependencyGraphManager, diamond) -> None:
        """Test dependencies come first."""
        assert graph.topological_order() == ["A", "B", "C", "D"]

    def test_topological_order_cycle(self, graph: DependencyGraphManager, write_raw) -> None:
        """Test ordering a cyclic tag raises."""
        write_raw(
            [
                {"id": "1", "title": "One", "dependencies": ["2"]},
                {"id": "2", "title": "Two", "dependencies": ["1"]},
            ]
        )

        with pytest.raises(CircularDependencyError):
            graph.topological_order()

    def test_ready_tasks(self, manager, graph: DependencyGraphManager, diamond) -> None:
        """Test readiness and ranking."""
        assert [t.id for t in graph.get_ready_tasks()] == ["A"]

        manager.update_task_status("A", "done")
        manager.create_task({"id": "E", "title": "Hotfix", "status": "in-progress"})

        assert [t.id for t in graph.get_ready_tasks()] == ["E", "B"]

    def test_task_impact(self, graph: DependencyGraphManager, diamond) -> None:
        """Test single-task impact of the root of the diamond."""
        impact = graph.analyze_task_impact("A")

        assert impact.affected_tasks == ["B", "C", "D"]
        assert impact.impact.direct_dependents == 2
        assert impact.impact.total_impact == 3
        assert impact.impact.impact_score == 7
        assert impact.on_critical_path
        assert impact.risk_level == "medium"

    def test_longest_path(self, graph: DependencyGraphManager, diamond) -> None:
        """Test the longest dependency chain of the diamond."""
        assert graph.get_longest_path() == ["A", "B", "C", "D"]

    def test_impact_off_longest_path(self, manager, graph: DependencyGraphManager, diamond) -> None:
        """Test a task outside the longest chain is not on the critical path."""
        manager.create_task({"id": "E", "title": "Docs", "priority": "high", "dependencies": ["A"]})

        impact = graph.analyze_task_impact("E")

        assert not impact.on_critical_path
        assert graph.analyze_task_impact("C").on_critical_path

    def test_impact_with_cycle(self, graph: DependencyGraphManager, write_raw) -> None:
        """Test impact still works when the tag has a cycle."""
        write_raw(
            [
                {"id": "1", "title": "One", "dependencies": ["2"]},
                {"id": "2", "title": "Two", "dependencies": ["1"]},
            ]
        )

        impact = graph.analyze_task_impact("1")

        assert impact.affected_tasks == ["2"]
        assert not impact.on_critical_path

    def test_new_dependent_never_lowers_impact(
        self, manager, graph: DependencyGraphManager, diamond
    ) -> None:
        """Test total impact does not decrease when a dependent is added."""
        before = graph.analyze_impact()["C"].total_impact

        manager.create_task({"id": "E", "title": "Docs"})
        graph.add_dependency("E", "C")

        assert graph.analyze_impact()["C"].total_impact >= before
        assert graph.analyze_impact()["C"].total_impact == before + 1

    def test_critical_path(self, graph: DependencyGraphManager, diamond) -> None:
        """Test only the high-priority root qualifies in the diamond."""
        assert graph.get_critical_path() == ["A"]
