"""Dependency graph report - one call from request to rendered outputs."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field

from taskgraph.core.exceptions import StorageError
from taskgraph.graph import analytics
from taskgraph.graph.dependency_manager import DependencyGraphManager
from taskgraph.graph.models import CamelModel, ImpactAnalysis
from taskgraph.graph.visualizer import FILE_EXTENSIONS, RENDERERS, GroupBy, RenderOptions
from taskgraph.tasks.models import Task, utcnow

OutputFormat = Literal["ascii", "json", "dot", "mermaid", "html", "all"]


class GraphReportRequest(BaseModel):
    """What to render and how."""

    tag: str | None = Field(default=None, description="Tag to render (default tag if unset)")
    output_format: OutputFormat = "ascii"
    include_orphans: bool = True
    max_depth: int = Field(default=0, ge=0, description="Hop limit around focus_task, 0 = all")
    focus_task: str | None = None
    group_by: GroupBy = "none"
    show_metadata: bool = True
    highlight_critical_path: bool = False
    analyze_impact: bool = False

    @property
    def formats(self) -> list[str]:
        """Concrete formats to render."""
        if self.output_format == "all":
            return list(RENDERERS)
        return [self.output_format]


class GraphReportMetadata(CamelModel):
    """Counts and options describing a rendered report."""

    total_tasks: int
    total_dependencies: int
    critical_path_length: int
    orphaned_tasks: int
    bottlenecks: int
    high_impact_tasks: int
    output_format: str
    focus_task: str | None = None
    group_by: str = "none"
    include_orphans: bool = True
    generated_at: datetime = Field(default_factory=utcnow)


class GraphReport(BaseModel):
    """Rendered graph in one or more formats, plus a summary."""

    rendered: dict[str, str | dict[str, Any]]
    summary: str
    metadata: GraphReportMetadata
    critical_path: list[str] = Field(default_factory=list)

    @property
    def primary(self) -> str | dict[str, Any]:
        """Rendering of the requested format (ascii for ``all``)."""
        fmt = self.metadata.output_format
        return self.rendered.get(fmt, self.rendered.get("ascii", ""))


# =============================================================================
# BUILD
# =============================================================================


def build_graph_report(
    request: GraphReportRequest,
    graph: DependencyGraphManager | None = None,
) -> GraphReport:
    """
    Render the dependency graph of a tag.

    Args:
        request: Report options.
        graph: Manager giving access to the tag (default settings if omitted).

    Returns:
        GraphReport with every requested rendering.

    Raises:
        NotFoundError: If focus_task is not in the tag.
        StorageError: If the tasks file cannot be read.

    Example:
        >>> report = build_graph_report(GraphReportRequest(output_format="mermaid"))
        >>> print(report.primary)
    """
    graph = graph or DependencyGraphManager()
    tag = graph.tasks.resolve_tag(request.tag)
    tasks = graph.store.load(tag).all_tasks()
    thresholds = graph.thresholds

    if request.focus_task:
        tasks = analytics.extract_subgraph(tasks, request.focus_task, request.max_depth)

    if not request.include_orphans:
        orphans = set(analytics.find_orphans(tasks))
        tasks = [task for task in tasks if task.id not in orphans]

    critical_path: list[str] = []
    if request.highlight_critical_path:
        critical_path = analytics.find_critical_path(tasks, thresholds)

    impact: dict[str, ImpactAnalysis] = {}
    if request.analyze_impact:
        impact = analytics.analyze_impact(tasks, thresholds)

    options = RenderOptions(
        group_by=request.group_by,
        show_metadata=request.show_metadata,
        critical_path=critical_path,
        impact=impact,
    )
    generated_at = utcnow()

    rendered: dict[str, str | dict[str, Any]] = {}
    for fmt in request.formats:
        if fmt == "json":
            rendered[fmt] = RENDERERS["json"](tasks, options, generated_at.isoformat())
        else:
            rendered[fmt] = RENDERERS[fmt](tasks, options)

    metadata = GraphReportMetadata(
        total_tasks=len(tasks),
        total_dependencies=analytics.count_dependencies(tasks),
        critical_path_length=len(critical_path),
        orphaned_tasks=len(analytics.find_orphans(tasks)),
        bottlenecks=len(analytics.find_bottlenecks(tasks, thresholds.bottleneck_dependents)),
        high_impact_tasks=sum(1 for a in impact.values() if a.is_critical),
        output_format=request.output_format,
        focus_task=request.focus_task,
        group_by=request.group_by,
        include_orphans=request.include_orphans,
        generated_at=generated_at,
    )

    logger.info(
        f"Rendered {', '.join(rendered)} graph for tag '{tag}' "
        f"({metadata.total_tasks} tasks, {metadata.total_dependencies} dependencies)"
    )
    return GraphReport(
        rendered=rendered,
        summary=summarize(tasks, metadata, bool(impact)),
        metadata=metadata,
        critical_path=critical_path,
    )


def summarize(tasks: list[Task], metadata: GraphReportMetadata, with_impact: bool) -> str:
    """Human-readable summary block for a report."""
    with_deps = sum(1 for task in tasks if task.dependencies)
    lines = [
        "# Dependency Graph Summary",
        "",
        f"Total Tasks: {metadata.total_tasks}",
        f"Total Dependencies: {metadata.total_dependencies}",
        f"Tasks with Dependencies: {with_deps}",
        f"Orphaned Tasks: {metadata.orphaned_tasks}",
        f"Critical Path Length: {metadata.critical_path_length}",
    ]
    if with_impact:
        lines.append(f"High Impact Tasks: {metadata.high_impact_tasks}")
    if metadata.bottlenecks:
        lines.append(f"Potential Bottlenecks: {metadata.bottlenecks}")
    lines.append(f"Generated: {metadata.generated_at.isoformat()}")
    return "\n".join(lines)


# =============================================================================
# OUTPUT FILES
# =============================================================================


def write_report(report: GraphReport, output_dir: str | Path) -> list[Path]:
    """
    Write each rendering to ``dependency-graph.<ext>`` in ``output_dir``.

    Returns:
        Paths written, in rendering order.

    Raises:
        StorageError: If a file cannot be written.
    """
    directory = Path(output_dir)
    written: list[Path] = []
    try:
        directory.mkdir(parents=True, exist_ok=True)
        for fmt, content in report.rendered.items():
            path = directory / f"dependency-graph.{FILE_EXTENSIONS[fmt]}"
            if isinstance(content, dict):
                path.write_text(json.dumps(content, indent=2), encoding="utf-8")
            else:
                path.write_text(content, encoding="utf-8")
            written.append(path)
    except OSError as e:
        raise StorageError(f"Failed to write graph report to {directory}", path=directory, cause=e) from e

    logger.info(f"Wrote {len(written)} graph file(s) to {directory}")
    return written
