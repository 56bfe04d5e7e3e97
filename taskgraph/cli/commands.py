"""Dependency, graph and tag commands for TaskGraph."""

from pathlib import Path

import typer
from rich.table import Table

from taskgraph.cli.main import app, console, emit_json, get_state, handle_errors, tasks_table
from taskgraph.core.exceptions import ValidationError
from taskgraph.graph.report import GraphReportRequest, build_graph_report, write_report

depend_app = typer.Typer(help="Manage dependencies between tasks", no_args_is_help=True)
tag_app = typer.Typer(help="Manage tags", no_args_is_help=True)

app.add_typer(depend_app, name="depend")
app.add_typer(tag_app, name="tag")


# =============================================================================
# DEPENDENCIES
# =============================================================================


@depend_app.command("add")
def depend_add(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Dependent task id"),
    dep_id: str = typer.Argument(..., help="Id of the task it depends on"),
) -> None:
    """
    Make TASK_ID depend on DEP_ID.
    """
    state = get_state(ctx)
    with handle_errors(state):
        task = state.graph.add_dependency(task_id, dep_id, tag=state.tag)

    if state.json_output:
        emit_json({"task": task.id, "dependencies": task.dependencies})
    else:
        console.print(f"[green]Task {task_id} now depends on {dep_id}[/green]")


@depend_app.command("remove")
def depend_remove(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Dependent task id"),
    dep_id: str = typer.Argument(..., help="Dependency to remove"),
) -> None:
    """
    Remove the dependency TASK_ID -> DEP_ID.
    """
    state = get_state(ctx)
    with handle_errors(state):
        removed = state.graph.remove_dependency(task_id, dep_id, tag=state.tag)

    if state.json_output:
        emit_json({"task": task_id, "dependency": dep_id, "removed": removed})
    elif removed:
        console.print(f"[green]Removed dependency {task_id} -> {dep_id}[/green]")
    else:
        console.print(f"[dim]Task {task_id} did not depend on {dep_id}[/dim]")


@depend_app.command("list")
def depend_list(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
) -> None:
    """
    Show direct dependencies and dependents of a task.
    """
    state = get_state(ctx)
    with handle_errors(state):
        dependencies = state.graph.get_dependencies(task_id, tag=state.tag)
        dependents = state.graph.get_dependents(task_id, tag=state.tag)

    if state.json_output:
        emit_json(
            {
                "task": task_id,
                "dependencies": [ref.to_dict() for ref in dependencies],
                "dependents": [ref.to_dict() for ref in dependents],
            }
        )
        return

    table = Table(title=f"Dependencies of {task_id}")
    table.add_column("Direction", style="cyan")
    table.add_column("ID")
    table.add_column("Title", style="bold")
    table.add_column("Status")
    for ref in dependencies:
        table.add_row("depends on", ref.id, ref.title, ref.status)
    for ref in dependents:
        table.add_row("needed by", ref.id, ref.title, ref.status)
    console.print(table)


@depend_app.command("validate")
def depend_validate(ctx: typer.Context) -> None:
    """
    Check the tag for missing dependencies, cycles and warnings.

    Exits with code 1 when errors are found.
    """
    state = get_state(ctx)
    with handle_errors(state):
        result = state.graph.validate_dependencies(tag=state.tag)

    if state.json_output:
        emit_json(result.to_dict())
    else:
        if result.is_valid:
            console.print(f"[green]Dependencies of tag '{result.tag}' are valid[/green]")
        for issue in result.errors:
            console.print(f"[red]error[/red] {issue.type}: {issue.message}")
        for issue in result.warnings:
            console.print(f"[yellow]{issue.severity}[/yellow] {issue.type}: {issue.message}")

    if not result.is_valid:
        raise typer.Exit(code=1)


@depend_app.command("impact")
def depend_impact(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
) -> None:
    """
    Show which tasks are affected if a task changes.
    """
    state = get_state(ctx)
    with handle_errors(state):
        impact = state.graph.analyze_task_impact(task_id, tag=state.tag)

    if state.json_output:
        emit_json(impact.to_dict())
        return

    console.print(f"[bold]Impact of task {task_id}[/bold] (risk: {impact.risk_level})")
    console.print(
        f"Direct dependents: {impact.impact.direct_dependents}  "
        f"Total impact: {impact.impact.total_impact}  "
        f"Score: {impact.impact.impact_score}"
    )
    if impact.affected_tasks:
        console.print(f"Affected: {', '.join(impact.affected_tasks)}")


@depend_app.command("ready")
def depend_ready(ctx: typer.Context) -> None:
    """
    List tasks whose dependencies are all finished.
    """
    state = get_state(ctx)
    with handle_errors(state):
        tasks = state.graph.get_ready_tasks(tag=state.tag)

    if state.json_output:
        emit_json([task.id for task in tasks])
    elif tasks:
        console.print(tasks_table(tasks, "Ready Tasks"))
    else:
        console.print("[dim]No ready tasks[/dim]")


@depend_app.command("order")
def depend_order(ctx: typer.Context) -> None:
    """
    Print task ids in dependency order.
    """
    state = get_state(ctx)
    with handle_errors(state):
        order = state.graph.topological_order(tag=state.tag)

    if state.json_output:
        emit_json(order)
    else:
        console.print(" -> ".join(order) if order else "[dim]No tasks[/dim]")


# =============================================================================
# GRAPH
# =============================================================================


@app.command()
def graph(
    ctx: typer.Context,
    fmt: str = typer.Option(
        "ascii",
        "--format",
        "-f",
        help="ascii, json, dot, mermaid, html or all",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Write dependency-graph.<ext> files here",
    ),
    focus: str | None = typer.Option(None, "--focus", help="Only tasks around this id"),
    depth: int = typer.Option(0, "--depth", help="Hops around --focus (0 = unlimited)"),
    group_by: str = typer.Option(
        "none",
        "--group-by",
        "-g",
        help="none, priority, status, assignee or tags",
    ),
    orphans: bool = typer.Option(True, "--orphans/--no-orphans", help="Include orphan tasks"),
    metadata: bool = typer.Option(True, "--metadata/--no-metadata", help="Show task metadata"),
    critical: bool = typer.Option(False, "--critical", help="Highlight the critical path"),
    impact: bool = typer.Option(False, "--impact", help="Include impact analysis"),
) -> None:
    """
    Render the dependency graph.
    """
    state = get_state(ctx)
    with handle_errors(state):
        try:
            request = GraphReportRequest(
                tag=state.tag,
                output_format=fmt,
                include_orphans=orphans,
                max_depth=depth,
                focus_task=focus,
                group_by=group_by,
                show_metadata=metadata,
                highlight_critical_path=critical,
                analyze_impact=impact,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid graph options: {e}") from e

        report = build_graph_report(request, graph=state.graph)
        written = write_report(report, output_dir) if output_dir else []

    if state.json_output:
        emit_json(
            {
                "rendered": report.rendered,
                "metadata": report.metadata.to_dict(),
                "files": [str(path) for path in written],
            }
        )
        return

    console.print(report.summary, markup=False, highlight=False)
    console.print()
    primary = report.primary
    if isinstance(primary, dict):
        emit_json(primary)
    else:
        typer.echo(primary, nl=False)
    for path in written:
        console.print(f"[green]Wrote {path}[/green]")


# =============================================================================
# TAGS
# =============================================================================


@tag_app.command("list")
def tag_list(ctx: typer.Context) -> None:
    """
    List tags in the tasks file.
    """
    state = get_state(ctx)
    with handle_errors(state):
        store = state.tasks.store
        tags = store.list_tags()
        counts = {name: store.load(name).count() for name in tags}

    if state.json_output:
        emit_json([{"name": name, "taskCount": counts[name]} for name in tags])
        return

    if not tags:
        console.print("[dim]No tags found[/dim]")
        return

    table = Table(title="Tags")
    table.add_column("Tag", style="cyan")
    table.add_column("Tasks")
    for name in tags:
        marker = " (active)" if name == state.tag else ""
        table.add_row(f"{name}{marker}", str(counts[name]))
    console.print(table)


@tag_app.command("create")
def tag_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Tag name"),
    description: str = typer.Option("", "--description", "-D", help="Tag description"),
) -> None:
    """
    Create an empty tag.
    """
    state = get_state(ctx)
    with handle_errors(state):
        state.tasks.store.create_tag(name, description)

    if state.json_output:
        emit_json({"created": name})
    else:
        console.print(f"[green]Created tag '{name}'[/green]")


@tag_app.command("delete")
def tag_delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Tag name"),
) -> None:
    """
    Delete a tag and all its tasks.
    """
    state = get_state(ctx)
    with handle_errors(state):
        removed = state.tasks.store.delete_tag(name)

    if state.json_output:
        emit_json({"deleted": name, "tasks": removed})
    else:
        console.print(f"[green]Deleted tag '{name}' ({removed} tasks)[/green]")
