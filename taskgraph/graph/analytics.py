"""Pure graph algorithms over task lists.

Every traversal is iterative with an explicit stack or queue and one
visited set per call, so large or not-yet-validated (cyclic) graphs
neither overflow the call stack nor loop forever. Edges pointing at ids
outside the given task list are ignored by traversals.
"""

from collections import defaultdict, deque
from collections.abc import Iterable, Mapping, Sequence

from loguru import logger

from taskgraph.core.exceptions import CircularDependencyError, NotFoundError
from taskgraph.graph.models import (
    DependencyEdge,
    GraphThresholds,
    ImpactAnalysis,
    RedundantDependency,
)
from taskgraph.tasks.models import Task

DEFAULT_THRESHOLDS = GraphThresholds()

Graph = Mapping[str, Sequence[str]]


# =============================================================================
# GRAPH BUILDING
# =============================================================================


def build_graph(tasks: Iterable[Task]) -> dict[str, list[str]]:
    """
    Build the adjacency list of a task list.

    Args:
        tasks: Tasks to include.

    Returns:
        Dictionary mapping task_id -> list of dependency task_ids.

    Example:
        >>> build_graph(tasks)["b"]
        ['a']
    """
    return {task.id: list(task.dependencies) for task in tasks}


def build_dependents(graph: Graph) -> dict[str, list[str]]:
    """Invert an adjacency list: task_id -> ids of tasks depending on it."""
    dependents: dict[str, list[str]] = defaultdict(list)
    for task_id, deps in graph.items():
        for dep_id in deps:
            dependents[dep_id].append(task_id)
    return dict(dependents)


def collect_edges(tasks: Sequence[Task]) -> list[DependencyEdge]:
    """
    Edges among ``tasks``, source = dependency, target = dependent.

    Only edges whose endpoints are both in ``tasks`` are returned; every
    renderer draws exactly this list.
    """
    ids = {task.id for task in tasks}
    return [
        DependencyEdge(source=dep_id, target=task.id)
        for task in tasks
        for dep_id in task.dependencies
        if dep_id in ids
    ]


def count_dependencies(tasks: Iterable[Task]) -> int:
    """Total number of declared dependency references."""
    return sum(len(task.dependencies) for task in tasks)


# =============================================================================
# CYCLE DETECTION
# =============================================================================


def detect_cycles(graph: Graph) -> list[list[str]]:
    """
    Find the distinct cycles of a graph with three-colour DFS.

    Each back edge met during the search yields one cycle, reported as an
    id path starting and ending at the same id. Cycles that are rotations
    of one another are reported once.

    Args:
        graph: Dependency graph (task_id -> [dependency_ids]).

    Returns:
        List of cycle paths (empty if the graph is acyclic).

    Example:
        >>> detect_cycles({"a": ["b"], "b": ["a"]})
        [['a', 'b', 'a']]
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    colors: dict[str, int] = {node: WHITE for node in graph}
    cycles: list[list[str]] = []
    seen: set[tuple[str, ...]] = set()

    for root in graph:
        if colors[root] != WHITE:
            continue

        path: list[str] = [root]
        position: dict[str, int] = {root: 0}
        colors[root] = GRAY
        stack = [iter(graph[root])]

        while stack:
            advanced = False
            for neighbor in stack[-1]:
                state = colors.get(neighbor)
                if state is None:
                    continue  # Skip dangling dependencies
                if state == GRAY:
                    cycle = path[position[neighbor]:]
                    key = _canonical(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(cycle + [neighbor])
                elif state == WHITE:
                    colors[neighbor] = GRAY
                    position[neighbor] = len(path)
                    path.append(neighbor)
                    stack.append(iter(graph[neighbor]))
                    advanced = True
                    break

            if not advanced:
                stack.pop()
                done = path.pop()
                del position[done]
                colors[done] = BLACK

    return cycles


def _canonical(cycle: Sequence[str]) -> tuple[str, ...]:
    """Rotation-independent key of a cycle (without the closing id)."""
    pivot = min(range(len(cycle)), key=lambda i: cycle[i])
    return tuple(cycle[pivot:]) + tuple(cycle[:pivot])


def rotate_cycle(cycle: Sequence[str], source: str, target: str) -> list[str] | None:
    """
    Rotate a closed cycle so it starts with the edge ``source -> target``.

    Returns:
        The rotated closed path, or None if the cycle does not use the edge.
    """
    nodes = list(cycle[:-1])
    for i, node in enumerate(nodes):
        if node == source and nodes[(i + 1) % len(nodes)] == target:
            rotated = nodes[i:] + nodes[:i]
            return rotated + [source]
    return None


def new_edge_cycle(graph: Graph, task_id: str, dep_id: str) -> list[str] | None:
    """
    Cycle closed by the edge ``task_id -> dep_id``, if any.

    ``graph`` must already contain the edge. Whole-graph detection runs
    first; only cycles through the new edge count, so an older cycle
    elsewhere does not block the edge.

    Returns:
        Closed id path starting and ending at ``task_id``, or None.

    Example:
        >>> new_edge_cycle({"a": ["b"], "b": ["a"]}, "a", "b")
        ['a', 'b', 'a']
    """
    for cycle in detect_cycles(graph):
        rotated = rotate_cycle(cycle, task_id, dep_id)
        if rotated:
            return rotated

    # DFS reports one back edge per cycle family; fall back to a direct search
    path = find_path(graph, dep_id, task_id)
    if path:
        return [task_id, *path]
    return None


def find_path(graph: Graph, start: str, goal: str) -> list[str] | None:
    """Shortest dependency path from ``start`` to ``goal`` (BFS), inclusive."""
    if start == goal:
        return [start]

    previous: dict[str, str] = {}
    visited = {start}
    queue: deque[str] = deque([start])

    while queue:
        node = queue.popleft()
        for neighbor in graph.get(node, ()):
            if neighbor in visited:
                continue
            visited.add(neighbor)
            previous[neighbor] = node
            if neighbor == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            queue.append(neighbor)

    return None


def topological_sort(graph: Graph) -> list[str]:
    """
    Order task ids so that every dependency precedes its dependents.

    Uses Kahn's algorithm; ties keep insertion order.

    Raises:
        CircularDependencyError: If the graph contains a cycle.
    """
    in_degree = {node: 0 for node in graph}
    for node, deps in graph.items():
        in_degree[node] = sum(1 for d in deps if d in in_degree)

    dependents = build_dependents(graph)
    queue: deque[str] = deque(node for node, degree in in_degree.items() if degree == 0)
    ordered: list[str] = []

    while queue:
        node = queue.popleft()
        ordered.append(node)
        for dependent in dependents.get(node, []):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(in_degree):
        cycles = detect_cycles(graph)
        raise CircularDependencyError(cycles[0] if cycles else [])

    return ordered


# =============================================================================
# TRAVERSALS
# =============================================================================


def collect_downstream(dependents: Mapping[str, Sequence[str]], task_id: str) -> list[str]:
    """
    Every task transitively dependent on ``task_id`` (BFS order).

    A single visited set means diamonds are counted once and a cycle
    through ``task_id`` terminates; ``task_id`` itself is never included.
    """
    visited = {task_id}
    affected: list[str] = []
    queue: deque[str] = deque([task_id])

    while queue:
        node = queue.popleft()
        for dependent in dependents.get(node, ()):
            if dependent in visited:
                continue
            visited.add(dependent)
            affected.append(dependent)
            queue.append(dependent)

    return affected


def collect_upstream(graph: Graph, task_id: str) -> list[str]:
    """Every task ``task_id`` transitively depends on (BFS order)."""
    visited = {task_id}
    found: list[str] = []
    queue: deque[str] = deque([task_id])

    while queue:
        node = queue.popleft()
        for dep_id in graph.get(node, ()):
            if dep_id in visited:
                continue
            visited.add(dep_id)
            found.append(dep_id)
            queue.append(dep_id)

    return found


def dependency_chain_length(graph: Graph, task_id: str) -> int:
    """
    Number of tasks on the longest dependency chain ending at ``task_id``.

    Back edges (cycles) contribute nothing, so the result is finite.
    """
    memo: dict[str, int] = {}
    on_path: set[str] = set()
    stack: list[tuple[str, bool]] = [(task_id, False)]

    while stack:
        node, expanded = stack.pop()
        if expanded:
            on_path.discard(node)
            deps = [d for d in graph.get(node, ()) if d in graph and d in memo]
            memo[node] = 1 + max((memo[d] for d in deps), default=0)
            continue
        if node in memo or node in on_path:
            continue
        on_path.add(node)
        stack.append((node, True))
        for dep_id in graph.get(node, ()):
            if dep_id in graph and dep_id not in memo and dep_id not in on_path:
                stack.append((dep_id, False))

    return memo.get(task_id, 1)


def extract_subgraph(tasks: Sequence[Task], focus_task: str, max_depth: int = 0) -> list[Task]:
    """
    Tasks within ``max_depth`` hops of ``focus_task`` in either direction.

    Args:
        tasks: Full task list.
        focus_task: Id at the centre of the subgraph.
        max_depth: Hop limit, 0 for unlimited.

    Returns:
        The selected tasks in their original order.

    Raises:
        NotFoundError: If ``focus_task`` is not among ``tasks``.
    """
    graph = build_graph(tasks)
    if focus_task not in graph:
        raise NotFoundError(focus_task, what="Focus task")

    dependents = build_dependents(graph)
    selected = {focus_task}
    queue: deque[tuple[str, int]] = deque([(focus_task, 0)])

    while queue:
        node, depth = queue.popleft()
        if max_depth > 0 and depth >= max_depth:
            continue
        for neighbor in [*graph.get(node, ()), *dependents.get(node, ())]:
            if neighbor in graph and neighbor not in selected:
                selected.add(neighbor)
                queue.append((neighbor, depth + 1))

    logger.debug(f"Subgraph around {focus_task}: {len(selected)} tasks")
    return [task for task in tasks if task.id in selected]


# =============================================================================
# STRUCTURAL QUERIES
# =============================================================================


def find_orphans(tasks: Sequence[Task]) -> list[str]:
    """Ids of tasks with no dependencies and no dependents."""
    dependents = build_dependents(build_graph(tasks))
    return [
        task.id
        for task in tasks
        if not task.dependencies and not dependents.get(task.id)
    ]


def find_bottlenecks(tasks: Sequence[Task], threshold: int = 3) -> list[str]:
    """Ids of tasks with at least ``threshold`` direct dependents."""
    dependents = build_dependents(build_graph(tasks))
    return [task.id for task in tasks if len(dependents.get(task.id, [])) >= threshold]


def find_redundant_dependencies(tasks: Sequence[Task]) -> list[RedundantDependency]:
    """
    Direct dependencies also reachable through another direct dependency.

    If C depends on A and B, and B depends on A, then C -> A is redundant
    via C -> B -> A.
    """
    graph = build_graph(tasks)
    redundant: list[RedundantDependency] = []

    for task in tasks:
        deps = [d for d in task.dependencies if d in graph]
        for dep_id in deps:
            for other in deps:
                if other == dep_id:
                    continue
                path = find_path(graph, other, dep_id)
                if path:
                    redundant.append(
                        RedundantDependency(
                            task_id=task.id,
                            dependency_id=dep_id,
                            path=[task.id, *path],
                        )
                    )
                    break

    return redundant


# =============================================================================
# CRITICAL PATH & IMPACT
# =============================================================================


def find_critical_path(
    tasks: Sequence[Task],
    thresholds: GraphThresholds = DEFAULT_THRESHOLDS,
) -> list[str]:
    """
    Rank structurally significant tasks.

    A task qualifies if its priority is ``high``, or if its effort is at
    least ``critical_effort`` and some task depends on it. Candidates are
    ranked by ``weight(priority) * effort`` descending (unset effort
    counts as 1); the sort is stable so ties keep the original order.

    This is a heuristic ranking, not a scheduling-theory critical path.
    """
    dependents = build_dependents(build_graph(tasks))

    def qualifies(task: Task) -> bool:
        if task.priority.value == "high":
            return True
        effort = task.effort or 0
        return effort >= thresholds.critical_effort and bool(dependents.get(task.id))

    def score(task: Task) -> int:
        return thresholds.weight(task.priority.value) * (task.effort or 1)

    candidates = [task for task in tasks if qualifies(task)]
    candidates.sort(key=score, reverse=True)
    return [task.id for task in candidates]


def find_longest_path(graph: Graph) -> list[str]:
    """
    Longest dependency chain, first task to last.

    Distances are relaxed in topological order; on ties the earliest
    predecessor and the earliest end task in that order win. A graph
    without edges has no path.

    Raises:
        CircularDependencyError: If the graph contains a cycle.
    """
    order = topological_sort(graph)
    distance = {node: 0 for node in order}
    previous: dict[str, str] = {}

    for node in order:
        for dep_id in graph.get(node, []):
            if dep_id not in distance:
                continue
            if distance[dep_id] + 1 > distance[node]:
                distance[node] = distance[dep_id] + 1
                previous[node] = dep_id

    end, longest = None, 0
    for node in order:
        if distance[node] > longest:
            end, longest = node, distance[node]

    path: list[str] = []
    while end is not None:
        path.append(end)
        end = previous.get(end)
    path.reverse()
    return path


def analyze_impact(
    tasks: Sequence[Task],
    thresholds: GraphThresholds = DEFAULT_THRESHOLDS,
) -> dict[str, ImpactAnalysis]:
    """
    Impact analysis for every task.

    ``impact_score = direct_dependents * 2 + total_impact``;
    ``is_critical`` when direct dependents or total impact reach their
    thresholds.
    """
    graph = build_graph(tasks)
    dependents = build_dependents(graph)
    analysis: dict[str, ImpactAnalysis] = {}

    for task in tasks:
        direct = len([d for d in dependents.get(task.id, []) if d in graph])
        total = len(collect_downstream(dependents, task.id))
        analysis[task.id] = ImpactAnalysis(
            direct_dependencies=len(task.dependencies),
            direct_dependents=direct,
            total_impact=total,
            impact_score=direct * 2 + total,
            is_critical=(
                direct >= thresholds.critical_dependents
                or total >= thresholds.critical_total_impact
            ),
        )

    return analysis


def risk_level(total_affected: int) -> str:
    """Risk bucket for a number of transitively affected tasks."""
    if total_affected >= 10:
        return "critical"
    if total_affected >= 5:
        return "high"
    if total_affected >= 2:
        return "medium"
    return "low"
