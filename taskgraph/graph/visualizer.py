"""Dependency graph renderers.

Each renderer is a pure function of a task list and RenderOptions. All of
them draw the same edge list from ``collect_edges`` so the formats never
disagree about which dependencies exist.
"""

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from taskgraph.graph.analytics import collect_edges
from taskgraph.graph.models import ImpactAnalysis
from taskgraph.tasks.models import Task

GroupBy = Literal["none", "priority", "status", "assignee", "tags"]

CRITICAL_MARK = "[*]"
TASK_MARK = "[-]"


class RenderOptions(BaseModel):
    """Presentation options shared by every renderer."""

    group_by: GroupBy = "none"
    show_metadata: bool = True
    critical_path: list[str] = Field(default_factory=list)
    impact: dict[str, ImpactAnalysis] = Field(default_factory=dict)

    def is_critical(self, task_id: str) -> bool:
        """True if the task is on the critical path."""
        return task_id in self.critical_path

    def is_high_impact(self, task_id: str) -> bool:
        """True if impact analysis flagged the task."""
        analysis = self.impact.get(task_id)
        return bool(analysis and analysis.is_critical)


# =============================================================================
# GROUPING
# =============================================================================


def group_key(task: Task, group_by: GroupBy) -> str:
    """Section name of a task for ``group_by``."""
    if group_by == "priority":
        return task.priority.value
    if group_by == "status":
        return task.status.value
    if group_by == "assignee":
        return task.assignee.display_name if task.assignee else "Unassigned"
    if group_by == "tags":
        return task.tags[0] if task.tags else "No Tags"
    return "All Tasks"


def group_tasks(tasks: list[Task], group_by: GroupBy) -> dict[str, list[Task]]:
    """Group tasks preserving first-seen group order and task order."""
    groups: dict[str, list[Task]] = {}
    for task in tasks:
        groups.setdefault(group_key(task, group_by), []).append(task)
    return groups


# =============================================================================
# ASCII
# =============================================================================


def render_ascii(tasks: list[Task], options: RenderOptions | None = None) -> str:
    """
    Plain-text report of tasks with their dependencies and dependents.

    Example:
        >>> print(render_ascii(tasks, RenderOptions(group_by="status")))
        # Dependency Graph
        ## pending
        ...
    """
    options = options or RenderOptions()
    by_id = {task.id: task for task in tasks}
    edges = collect_edges(tasks)
    deps_of: dict[str, list[str]] = {}
    dependents_of: dict[str, list[str]] = {}
    for edge in edges:
        deps_of.setdefault(edge.target, []).append(edge.source)
        dependents_of.setdefault(edge.source, []).append(edge.target)

    lines = ["# Dependency Graph", ""]
    for name, group in group_tasks(tasks, options.group_by).items():
        if options.group_by != "none":
            lines.extend([f"## {name}", ""])

        for task in group:
            mark = CRITICAL_MARK if options.is_critical(task.id) else TASK_MARK
            lines.append(f"{mark} {task.title} ({task.id})")

            if options.show_metadata:
                effort = f"{task.effort}/5" if task.effort else "N/A"
                lines.append(
                    f"    Priority: {task.priority.value} | Status: {task.status.value} "
                    f"| Effort: {effort}"
                )

            impact = options.impact.get(task.id)
            if impact:
                lines.append(
                    f"    Impact Score: {impact.impact_score} | Dependencies: "
                    f"{impact.direct_dependencies} | Dependents: {impact.direct_dependents}"
                )

            if deps_of.get(task.id):
                lines.append("    Dependencies:")
                for dep_id in deps_of[task.id]:
                    marker = CRITICAL_MARK if options.is_critical(dep_id) else "<-"
                    lines.append(f"      {marker} {by_id[dep_id].title} ({dep_id})")

            if dependents_of.get(task.id):
                lines.append("    Dependents:")
                for dep_id in dependents_of[task.id]:
                    marker = CRITICAL_MARK if options.is_critical(dep_id) else "->"
                    lines.append(f"      {marker} {by_id[dep_id].title} ({dep_id})")

            lines.append("")

    return "\n".join(lines).rstrip() + "\n"


# =============================================================================
# JSON
# =============================================================================


def render_json(
    tasks: list[Task],
    options: RenderOptions | None = None,
    generated_at: str | None = None,
) -> dict[str, Any]:
    """Node/edge graph document suitable for graph libraries."""
    options = options or RenderOptions()
    edges = collect_edges(tasks)

    nodes = []
    for task in tasks:
        impact = options.impact.get(task.id)
        nodes.append(
            {
                "id": task.id,
                "label": task.title,
                "priority": task.priority.value,
                "status": task.status.value,
                "effort": task.effort,
                "isCritical": options.is_critical(task.id),
                "impact": impact.to_dict() if impact else None,
                "metadata": {
                    "description": task.description,
                    "assignee": task.assignee.display_name if task.assignee else None,
                    "tags": list(task.tags),
                },
            }
        )

    metadata: dict[str, Any] = {
        "totalNodes": len(nodes),
        "totalEdges": len(edges),
        "criticalPathLength": len(options.critical_path),
    }
    if generated_at:
        metadata["generatedAt"] = generated_at

    return {
        "graph": {
            "directed": True,
            "nodes": nodes,
            "edges": [edge.to_dict() for edge in edges],
        },
        "metadata": metadata,
    }


# =============================================================================
# GRAPHVIZ DOT
# =============================================================================


def dot_escape(value: str) -> str:
    """Escape a string for a double-quoted DOT identifier."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def render_dot(tasks: list[Task], options: RenderOptions | None = None) -> str:
    """Graphviz digraph with critical and high-impact colouring."""
    options = options or RenderOptions()
    lines = [
        "digraph DependencyGraph {",
        "  rankdir=TB;",
        "  node [shape=box, style=rounded];",
        "",
    ]

    for task in tasks:
        if options.is_critical(task.id):
            fill = "orange"
        elif options.is_high_impact(task.id):
            fill = "yellow"
        else:
            fill = "lightblue"

        label = dot_escape(task.title)
        if options.show_metadata:
            label += f"\\n{task.priority.value} | {task.status.value}"
            if task.effort:
                label += f" | {task.effort}/5"
        lines.append(
            f'  "{dot_escape(task.id)}" [label="{label}", '
            f'fillcolor={fill}, style="rounded,filled"];'
        )

    lines.append("")
    for edge in collect_edges(tasks):
        critical = options.is_critical(edge.source) and options.is_critical(edge.target)
        style = "color=red, penwidth=2" if critical else "color=black"
        lines.append(f'  "{dot_escape(edge.source)}" -> "{dot_escape(edge.target)}" [{style}];')

    lines.append("}")
    return "\n".join(lines) + "\n"


# =============================================================================
# MERMAID
# =============================================================================


def mermaid_id(task_id: str) -> str:
    """
    Mermaid-safe node identifier for a task id.

    Letters and digits pass through; every other character, underscore
    included, becomes ``_<hex>_`` so distinct ids never collide
    (``1.1`` -> ``t_1_2e_1``, ``1_1`` -> ``t_1_5f_1``).
    """
    return "t_" + re.sub(r"[^A-Za-z0-9]", lambda m: f"_{ord(m.group()):x}_", task_id)


def mermaid_label(title: str) -> str:
    """Quoted Mermaid label."""
    return '"' + title.replace('"', "#quot;") + '"'


def render_mermaid(tasks: list[Task], options: RenderOptions | None = None) -> str:
    """Mermaid flowchart (graph TD)."""
    options = options or RenderOptions()
    lines = ["graph TD"]

    for task in tasks:
        node = f"    {mermaid_id(task.id)}[{mermaid_label(task.title)}]"
        if options.is_critical(task.id):
            node += ":::critical"
        lines.append(node)

    lines.append("")
    for edge in collect_edges(tasks):
        lines.append(f"    {mermaid_id(edge.source)} --> {mermaid_id(edge.target)}")

    lines.append("")
    lines.append("    classDef critical fill:#ff9999,stroke:#333,stroke-width:2px")
    return "\n".join(lines) + "\n"


# =============================================================================
# HTML
# =============================================================================

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Dependency Graph</title>
    <script src="https://d3js.org/d3.v7.min.js"></script>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 20px; }}
        .graph-container {{ width: 100%; height: 600px; border: 1px solid #ccc; }}
        .link {{ stroke: #999; stroke-width: 2; }}
        .legend-item {{ display: inline-block; margin-right: 20px; }}
        .legend-color {{ width: 20px; height: 20px; display: inline-block; vertical-align: middle; }}
    </style>
</head>
<body>
    <h1>Dependency Graph</h1>
    <div class="graph-container" id="graph"></div>
    <div class="legend">
        <span class="legend-item"><span class="legend-color" style="background: lightblue;"></span> Task</span>
        <span class="legend-item"><span class="legend-color" style="background: orange;"></span> Critical Path</span>
        <span class="legend-item"><span class="legend-color" style="background: yellow;"></span> High Impact</span>
    </div>
    <script>
        const graphData = {graph_json};
        const width = 800, height = 600;
        const svg = d3.select("#graph").append("svg").attr("width", width).attr("height", height);
        const simulation = d3.forceSimulation(graphData.nodes)
            .force("link", d3.forceLink(graphData.edges).id(d => d.id).distance(100))
            .force("charge", d3.forceManyBody().strength(-300))
            .force("center", d3.forceCenter(width / 2, height / 2));
        const link = svg.append("g").selectAll("line").data(graphData.edges).join("line")
            .attr("class", "link");
        const node = svg.append("g").selectAll("circle").data(graphData.nodes).join("circle")
            .attr("r", 10)
            .attr("fill", d => d.isCritical ? "orange" : (d.impact && d.impact.isCritical ? "yellow" : "lightblue"));
        const label = svg.append("g").selectAll("text").data(graphData.nodes).join("text")
            .text(d => d.label).attr("font-size", "12px").attr("dx", 15).attr("dy", 4);
        simulation.on("tick", () => {{
            link.attr("x1", d => d.source.x).attr("y1", d => d.source.y)
                .attr("x2", d => d.target.x).attr("y2", d => d.target.y);
            node.attr("cx", d => d.x).attr("cy", d => d.y);
            label.attr("x", d => d.x).attr("y", d => d.y);
        }});
    </script>
</body>
</html>
"""


def render_html(tasks: list[Task], options: RenderOptions | None = None) -> str:
    """Self-contained page drawing the JSON graph with a d3 force layout."""
    graph = render_json(tasks, options)["graph"]
    # Keep titles from closing the script element
    graph_json = json.dumps(graph, indent=2).replace("</", "<\\/")
    return HTML_TEMPLATE.format(graph_json=graph_json)


RENDERERS = {
    "ascii": render_ascii,
    "json": render_json,
    "dot": render_dot,
    "mermaid": render_mermaid,
    "html": render_html,
}

FILE_EXTENSIONS = {
    "ascii": "txt",
    "json": "json",
    "dot": "dot",
    "mermaid": "mmd",
    "html": "html",
}
