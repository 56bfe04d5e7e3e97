"""Dependency graph manager - edges, validation and graph queries per tag.

Mutations (add/remove edge) run under the store's tag lock as one
load-mutate-save cycle. Queries load the tag and delegate to the pure
functions in ``taskgraph.graph.analytics``.
"""

from loguru import logger

from taskgraph.core.config import Settings
from taskgraph.core.exceptions import CircularDependencyError, NotFoundError, ValidationError
from taskgraph.graph import analytics
from taskgraph.graph.models import (
    DependencyEdge,
    DependencyValidationResult,
    GraphThresholds,
    ImpactAnalysis,
    TaskImpact,
    TaskRef,
    ValidationIssue,
)
from taskgraph.tasks.manager import PRIORITY_RANK, TaskManager, id_sort_key
from taskgraph.tasks.models import Task, TaskCollection, TaskStatus
from taskgraph.tasks.store import TaskStore

MISSING_TITLE = "<missing>"
MISSING_STATUS = "unknown"

# Statuses a dependency may have for its dependent to be workable.
SATISFIED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.CANCELLED})


class DependencyGraphManager:
    """
    Manage dependency edges between tasks of one tag.

    Example:
        >>> graph = DependencyGraphManager()
        >>> graph.add_dependency("3", "1", tag="master")
        >>> result = graph.validate_dependencies("master")
        >>> result.is_valid
        True
    """

    def __init__(
        self,
        task_manager: TaskManager | None = None,
        store: TaskStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            task_manager: Shared task manager (built from store/settings if omitted).
            store: Store to use when no task manager is given.
            settings: Optional settings override.
        """
        self.tasks = task_manager or TaskManager(store=store, settings=settings)
        self.store = self.tasks.store
        self.settings = self.tasks.settings
        self.thresholds = GraphThresholds.from_settings(self.settings)

    def _load(self, tag: str | None) -> tuple[str, TaskCollection]:
        tag = self.tasks.resolve_tag(tag)
        return tag, self.store.load(tag)

    # =========================================================================
    # EDGE MUTATION
    # =========================================================================

    def add_dependency(self, task_id: str, dep_id: str, tag: str | None = None) -> Task:
        """
        Make ``task_id`` depend on ``dep_id``.

        Adding an existing edge is a no-op. A new edge is added
        tentatively and rolled back if it closes a cycle; nothing is
        written in that case.

        Args:
            task_id: Dependent task.
            dep_id: Task it will depend on.
            tag: Tag holding both tasks.

        Returns:
            The updated dependent task.

        Raises:
            NotFoundError: If either task does not exist.
            ValidationError: If task_id == dep_id.
            CircularDependencyError: If the edge would close a cycle.
        """
        tag = self.tasks.resolve_tag(tag)
        if task_id == dep_id:
            raise ValidationError(
                f"Task '{task_id}' cannot depend on itself",
                fields=["dependencies"],
            )

        with self.store.lock(tag):
            collection = self.store.load(tag)
            task = collection.find(task_id)
            if task is None:
                raise NotFoundError(task_id, tag)
            if collection.find(dep_id) is None:
                raise NotFoundError(dep_id, tag, what="Dependency")

            if dep_id in task.dependencies:
                logger.debug(f"Dependency {task_id} -> {dep_id} already exists")
                return task

            original = list(task.dependencies)
            task.dependencies = [*original, dep_id]
            cycle = analytics.new_edge_cycle(collection.adjacency(), task_id, dep_id)
            if cycle:
                task.dependencies = original
                logger.warning(f"Rejected dependency {task_id} -> {dep_id}: {' -> '.join(cycle)}")
                raise CircularDependencyError(cycle)

            collection.link_blocker(task, dep_id)
            task.metadata.touch()
            self.store.save(tag, collection)

        logger.info(f"Added dependency {task_id} -> {dep_id} in tag '{tag}'")
        return task

    def remove_dependency(self, task_id: str, dep_id: str, tag: str | None = None) -> bool:
        """
        Remove the edge ``task_id -> dep_id``.

        Returns:
            True if an edge was removed, False if it did not exist.

        Raises:
            NotFoundError: If ``task_id`` does not exist.
        """
        tag = self.tasks.resolve_tag(tag)
        with self.store.lock(tag):
            collection = self.store.load(tag)
            task = collection.find(task_id)
            if task is None:
                raise NotFoundError(task_id, tag)

            if dep_id not in task.dependencies:
                logger.debug(f"No dependency {task_id} -> {dep_id} to remove")
                return False

            task.dependencies = [d for d in task.dependencies if d != dep_id]
            collection.unlink_blocker(task, dep_id)
            task.metadata.touch()
            self.store.save(tag, collection)

        logger.info(f"Removed dependency {task_id} -> {dep_id} in tag '{tag}'")
        return True

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_dependencies(self, tag: str | None = None) -> DependencyValidationResult:
        """
        Scan a tag for dangling references, cycles and structural smells.

        Errors make the graph invalid; warnings are advisory.
        """
        tag, collection = self._load(tag)
        tasks = collection.all_tasks()
        by_id = {t.id: t for t in tasks}
        graph = analytics.build_graph(tasks)
        result = DependencyValidationResult(
            tag=tag,
            total_tasks=len(tasks),
            total_dependencies=analytics.count_dependencies(tasks),
        )

        for task in tasks:
            for dep_id in task.dependencies:
                dep = by_id.get(dep_id)
                if dep is None:
                    result.errors.append(
                        ValidationIssue(
                            type="missing_dependency",
                            severity="critical",
                            message=f"Task {task.id} depends on non-existent task {dep_id}",
                            affected_tasks=[task.id, dep_id],
                            suggestion=f"Remove dependency {dep_id} or create the task",
                        )
                    )
                    continue
                if dep.status == TaskStatus.CANCELLED:
                    result.warnings.append(
                        ValidationIssue(
                            type="cancelled_dependency",
                            severity="warning",
                            message=f"Task {task.id} depends on cancelled task {dep_id}",
                            affected_tasks=[task.id, dep_id],
                            suggestion="Remove the dependency or reactivate the task",
                        )
                    )
                if task.status == TaskStatus.DONE and dep.status not in SATISFIED_STATUSES:
                    result.warnings.append(
                        ValidationIssue(
                            type="status_inconsistency",
                            severity="warning",
                            message=(
                                f"Task {task.id} is done but depends on "
                                f"{dep_id} ({dep.status.value})"
                            ),
                            affected_tasks=[task.id, dep_id],
                        )
                    )

            if len(task.dependencies) > self.thresholds.max_dependencies_warning:
                result.warnings.append(
                    ValidationIssue(
                        type="too_many_dependencies",
                        severity="warning",
                        message=(
                            f"Task {task.id} has {len(task.dependencies)} dependencies"
                        ),
                        affected_tasks=[task.id],
                        suggestion="Consider breaking the task down",
                    )
                )

        result.cycles = analytics.detect_cycles(graph)
        for cycle in result.cycles:
            result.errors.append(
                ValidationIssue(
                    type="circular_dependency",
                    severity="critical",
                    message=f"Circular dependency: {' -> '.join(cycle)}",
                    affected_tasks=cycle[:-1],
                    suggestion="Remove one dependency in the cycle",
                )
            )

        dependents = analytics.build_dependents(graph)
        for task_id in analytics.find_bottlenecks(tasks, self.thresholds.bottleneck_dependents):
            count = len(dependents.get(task_id, []))
            result.warnings.append(
                ValidationIssue(
                    type="bottleneck",
                    severity="info",
                    message=f"Task {task_id} blocks {count} tasks",
                    affected_tasks=[task_id, *dependents.get(task_id, [])],
                    suggestion="Prioritize this task",
                )
            )

        for redundant in analytics.find_redundant_dependencies(tasks):
            result.warnings.append(
                ValidationIssue(
                    type="redundant_dependency",
                    severity="info",
                    message=(
                        f"Task {redundant.task_id} -> {redundant.dependency_id} is implied by "
                        f"{' -> '.join(redundant.path)}"
                    ),
                    affected_tasks=[redundant.task_id, redundant.dependency_id],
                    suggestion=f"Remove dependency {redundant.dependency_id}",
                )
            )

        if not result.cycles:
            for task in tasks:
                if dependents.get(task.id):
                    continue
                length = analytics.dependency_chain_length(graph, task.id)
                if length >= self.thresholds.long_chain:
                    result.warnings.append(
                        ValidationIssue(
                            type="long_chain",
                            severity="info",
                            message=f"Task {task.id} ends a dependency chain of {length} tasks",
                            affected_tasks=[task.id],
                            suggestion="Look for work that can run in parallel",
                        )
                    )

        logger.info(
            f"Validated tag '{tag}': {len(result.errors)} errors, "
            f"{len(result.warnings)} warnings"
        )
        return result

    # =========================================================================
    # NEIGHBOURS
    # =========================================================================

    def get_dependencies(self, task_id: str, tag: str | None = None) -> list[TaskRef]:
        """Direct dependencies of a task (dangling ids become placeholders).

        An unknown ``task_id`` has no dependencies.
        """
        _, collection = self._load(tag)
        task = collection.find(task_id)
        if task is None:
            return []
        by_id = collection.task_map()
        return [_ref(dep_id, by_id.get(dep_id)) for dep_id in task.dependencies]

    def get_dependents(self, task_id: str, tag: str | None = None) -> list[TaskRef]:
        """Tasks that directly depend on ``task_id`` (none for an unknown id)."""
        _, collection = self._load(tag)
        return [_ref(t.id, t) for t in collection.dependents_of(task_id)]

    def get_blocked_tasks(self, task_id: str, tag: str | None = None) -> list[TaskRef]:
        """Tasks recorded as blocked by ``task_id`` through blocks/blockedBy."""
        _, collection = self._load(tag)
        by_id = collection.task_map()
        task = by_id.get(task_id)
        if task is None:
            return []
        ids = list(task.blocks)
        ids.extend(t.id for t in by_id.values() if task_id in t.blocked_by)
        return [_ref(blocked_id, by_id.get(blocked_id)) for blocked_id in dict.fromkeys(ids)]

    def get_blocking_tasks(self, task_id: str, tag: str | None = None) -> list[TaskRef]:
        """Tasks recorded as blocking ``task_id`` through blocks/blockedBy."""
        _, collection = self._load(tag)
        by_id = collection.task_map()
        task = by_id.get(task_id)
        if task is None:
            return []
        ids = list(task.blocked_by)
        ids.extend(t.id for t in by_id.values() if task_id in t.blocks)
        return [_ref(blocker_id, by_id.get(blocker_id)) for blocker_id in dict.fromkeys(ids)]

    def get_dependency_chain(self, task_id: str, tag: str | None = None) -> list[DependencyEdge]:
        """Edges of the upstream closure of ``task_id``."""
        tag, collection = self._load(tag)
        if collection.find(task_id) is None:
            raise NotFoundError(task_id, tag)

        graph = collection.adjacency()
        closure = [task_id, *analytics.collect_upstream(graph, task_id)]
        return [
            DependencyEdge(source=dep_id, target=node)
            for node in closure
            for dep_id in graph.get(node, [])
            if dep_id in closure
        ]

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    def get_critical_path(self, tag: str | None = None) -> list[str]:
        """Ranked critical-path task ids."""
        _, collection = self._load(tag)
        return analytics.find_critical_path(collection.all_tasks(), self.thresholds)

    def get_longest_path(self, tag: str | None = None) -> list[str]:
        """
        Longest dependency chain of a tag.

        Raises:
            CircularDependencyError: If the tag contains a cycle.
        """
        _, collection = self._load(tag)
        return analytics.find_longest_path(collection.adjacency())

    def analyze_impact(self, tag: str | None = None) -> dict[str, ImpactAnalysis]:
        """Impact analysis for every task of a tag."""
        _, collection = self._load(tag)
        return analytics.analyze_impact(collection.all_tasks(), self.thresholds)

    def analyze_task_impact(self, task_id: str, tag: str | None = None) -> TaskImpact:
        """
        Impact of changing one task.

        Raises:
            NotFoundError: If the task does not exist.
        """
        tag, collection = self._load(tag)
        if collection.find(task_id) is None:
            raise NotFoundError(task_id, tag)

        tasks = collection.all_tasks()
        dependents = analytics.build_dependents(analytics.build_graph(tasks))
        affected = analytics.collect_downstream(dependents, task_id)
        impact = analytics.analyze_impact(tasks, self.thresholds)[task_id]
        try:
            longest = analytics.find_longest_path(collection.adjacency())
        except CircularDependencyError as e:
            logger.warning(f"No longest path in tag '{tag}': {e}")
            longest = []

        return TaskImpact(
            task_id=task_id,
            impact=impact,
            affected_tasks=affected,
            on_critical_path=task_id in longest,
            risk_level=analytics.risk_level(len(affected)),
        )

    def topological_order(self, tag: str | None = None) -> list[str]:
        """
        Task ids with every dependency before its dependents.

        Raises:
            CircularDependencyError: If the tag contains a cycle.
        """
        _, collection = self._load(tag)
        return analytics.topological_sort(collection.adjacency())

    def get_ready_tasks(self, tag: str | None = None) -> list[Task]:
        """
        Workable tasks: pending or in progress with every dependency done
        or cancelled.

        Ranked by urgency (in-progress first, then earliest due date),
        then priority, then id.
        """
        _, collection = self._load(tag)
        by_id = collection.task_map()

        def ready(task: Task) -> bool:
            if task.status not in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS):
                return False
            return all(
                dep_id in by_id and by_id[dep_id].status in SATISFIED_STATUSES
                for dep_id in task.dependencies
            )

        def rank(task: Task) -> tuple:
            due = task.due_date.timestamp() if task.due_date else float("inf")
            return (
                0 if task.status == TaskStatus.IN_PROGRESS else 1,
                due,
                PRIORITY_RANK[task.priority],
                id_sort_key(task.id),
            )

        return sorted((t for t in collection.iter_tasks() if ready(t)), key=rank)


def _ref(task_id: str, task: Task | None) -> TaskRef:
    """Display reference, with a placeholder for dangling ids."""
    if task is None:
        return TaskRef(id=task_id, title=MISSING_TITLE, status=MISSING_STATUS, missing=True)
    return TaskRef(id=task.id, title=task.title, status=task.status.value)
