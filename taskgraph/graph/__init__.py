"""Dependency graph - analysis and rendering.

The pure building blocks live here; the tag-aware entry points are
``taskgraph.graph.dependency_manager.DependencyGraphManager`` and
``taskgraph.graph.report.build_graph_report``.
"""

from taskgraph.graph.analytics import (
    analyze_impact,
    collect_edges,
    detect_cycles,
    extract_subgraph,
    find_bottlenecks,
    find_critical_path,
    find_orphans,
    find_redundant_dependencies,
    topological_sort,
)
from taskgraph.graph.models import (
    DependencyEdge,
    DependencyValidationResult,
    GraphThresholds,
    ImpactAnalysis,
    TaskImpact,
    TaskRef,
    ValidationIssue,
)
from taskgraph.graph.visualizer import (
    RenderOptions,
    render_ascii,
    render_dot,
    render_html,
    render_json,
    render_mermaid,
)

__all__ = [
    "DependencyEdge",
    "DependencyValidationResult",
    "GraphThresholds",
    "ImpactAnalysis",
    "RenderOptions",
    "TaskImpact",
    "TaskRef",
    "ValidationIssue",
    "analyze_impact",
    "collect_edges",
    "detect_cycles",
    "extract_subgraph",
    "find_bottlenecks",
    "find_critical_path",
    "find_orphans",
    "find_redundant_dependencies",
    "render_ascii",
    "render_dot",
    "render_html",
    "render_json",
    "render_mermaid",
    "topological_sort",
]
