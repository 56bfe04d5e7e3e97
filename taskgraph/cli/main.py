"""Main CLI entry point using Typer."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from taskgraph import __version__
from taskgraph.core.config import Settings
from taskgraph.core.exceptions import StorageError, TaskGraphError, ValidationError
from taskgraph.core.logging_setup import configure_logging
from taskgraph.graph.dependency_manager import DependencyGraphManager
from taskgraph.tasks.manager import TaskFilters, TaskManager
from taskgraph.tasks.models import Task, TaskStatus
from taskgraph.tasks.store import TaskStore

app = typer.Typer(
    name="taskgraph",
    help="TaskGraph - tasks, dependencies and graph reports",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()

STATUS_STYLES = {
    "pending": "white",
    "in-progress": "cyan",
    "blocked": "red",
    "review": "magenta",
    "done": "green",
    "deferred": "dim",
    "cancelled": "dim strike",
}


# =============================================================================
# SHARED STATE
# =============================================================================


@dataclass
class CLIState:
    """Options given before the command name."""

    settings: Settings
    tag: str
    json_output: bool = False

    @property
    def tasks(self) -> TaskManager:
        return TaskManager(store=TaskStore(settings=self.settings), settings=self.settings)

    @property
    def graph(self) -> DependencyGraphManager:
        return DependencyGraphManager(task_manager=self.tasks)


def get_state(ctx: typer.Context) -> CLIState:
    """State stored by the root callback."""
    return ctx.obj


@contextmanager
def handle_errors(state: CLIState) -> Iterator[None]:
    """Print engine errors as ``<kind>: <message>`` (or JSON) and exit 1."""
    try:
        yield
    except TaskGraphError as e:
        if state.json_output:
            typer.echo(json.dumps({"error": e.to_dict()}), err=True)
        else:
            typer.echo(f"{e.kind}: {e.message}", err=True)
        raise typer.Exit(code=1) from e


def emit_json(data: Any) -> None:
    """Write a JSON document to stdout."""
    typer.echo(json.dumps(data, indent=2, default=str))


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]TaskGraph[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Path | None = typer.Option(
        None,
        "--data-dir",
        help="Directory holding tasks.json",
        envvar="TASKGRAPH_DATA_DIR",
    ),
    tag: str | None = typer.Option(
        None,
        "--tag",
        "-t",
        help="Tag to operate on (defaults to the configured default tag)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Machine-readable JSON output",
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level for stderr",
        envvar="TASKGRAPH_LOG_LEVEL",
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    TaskGraph - manage tasks and their dependency graph.

    Every command works on one tag of the tasks file in --data-dir.
    """
    overrides: dict[str, Any] = {"log_level": log_level.upper(), "debug": debug}
    if data_dir is not None:
        overrides["data_dir"] = data_dir

    try:
        settings = Settings(**overrides)
    except ValueError as e:
        typer.echo(f"validation_error: {e}", err=True)
        raise typer.Exit(code=1) from e

    configure_logging(settings)
    ctx.obj = CLIState(
        settings=settings,
        tag=tag or settings.default_tag,
        json_output=json_output,
    )


# =============================================================================
# DISPLAY HELPERS
# =============================================================================


def status_text(status: TaskStatus | str) -> str:
    """Rich-styled status label."""
    value = status.value if isinstance(status, TaskStatus) else status
    return f"[{STATUS_STYLES.get(value, 'white')}]{value}[/]"


def tasks_table(tasks: list[Task], title: str) -> Table:
    """Tabular view of tasks."""
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Dependencies")

    for task in tasks:
        deps = ", ".join(task.dependencies) or "-"
        table.add_row(
            task.id,
            task.title,
            status_text(task.status),
            task.priority.value,
            deps[:30] + "..." if len(deps) > 30 else deps,
        )
    return table


def show_task(task: Task) -> None:
    """Detail panel for one task."""
    lines = [
        f"[bold]{task.title}[/bold]",
        "",
        f"Status: {status_text(task.status)}   Priority: {task.priority.value}   "
        f"Type: {task.type.value}",
    ]
    if task.effort:
        lines.append(f"Effort: {task.effort}/5")
    if task.assignee:
        lines.append(f"Assignee: {task.assignee.display_name}")
    if task.tags:
        lines.append(f"Labels: {', '.join(task.tags)}")
    if task.description:
        lines.extend(["", task.description])
    if task.details:
        lines.extend(["", "[dim]Details:[/dim]", task.details])
    if task.dependencies:
        lines.append(f"\nDepends on: {', '.join(task.dependencies)}")
    if task.subtasks:
        lines.append("\nSubtasks:")
        lines.extend(f"  {sub.id}  {sub.title} ({sub.status.value})" for sub in task.subtasks)

    console.print(Panel("\n".join(lines), title=f"Task {task.id}", border_style="blue"))


def build_task_data(**fields: Any) -> dict[str, Any]:
    """Drop unset CLI options and map list options."""
    data: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None or value == []:
            continue
        data[key] = value
    return data


# =============================================================================
# TASK COMMANDS
# =============================================================================


@app.command()
def add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: str | None = typer.Option(None, "--description", "-D", help="Description"),
    priority: str | None = typer.Option(None, "--priority", "-p", help="low, medium, high, critical"),
    task_type: str | None = typer.Option(None, "--type", help="Task type (feature, bug, ...)"),
    effort: int | None = typer.Option(None, "--effort", "-e", help="Effort 1-5"),
    depends: list[str] = typer.Option([], "--depends", help="Dependency id (repeatable)"),
    labels: list[str] = typer.Option([], "--label", "-l", help="Label (repeatable)"),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="Assignee id or name"),
    details: str | None = typer.Option(None, "--details", help="Implementation details"),
    task_id: str | None = typer.Option(None, "--id", help="Explicit task id"),
) -> None:
    """
    Create a task.
    """
    state = get_state(ctx)
    data = build_task_data(
        id=task_id,
        title=title,
        description=description,
        priority=priority,
        type=task_type,
        effort=effort,
        dependencies=depends,
        tags=labels,
        assignee=assignee,
        details=details,
    )
    with handle_errors(state):
        task = state.tasks.create_task(data, tag=state.tag)

    if state.json_output:
        emit_json(task.to_record())
    else:
        console.print(f"[green]Created task {task.id}:[/green] {task.title}")


@app.command()
def subtask(
    ctx: typer.Context,
    parent_id: str = typer.Argument(..., help="Parent task id"),
    title: str = typer.Argument(..., help="Subtask title"),
    description: str | None = typer.Option(None, "--description", "-D", help="Description"),
    priority: str | None = typer.Option(None, "--priority", "-p", help="low, medium, high, critical"),
    effort: int | None = typer.Option(None, "--effort", "-e", help="Effort 1-5"),
    depends: list[str] = typer.Option([], "--depends", help="Dependency id (repeatable)"),
) -> None:
    """
    Create a subtask under a parent task.
    """
    state = get_state(ctx)
    data = build_task_data(
        title=title,
        description=description,
        priority=priority,
        effort=effort,
        dependencies=depends,
    )
    with handle_errors(state):
        task = state.tasks.create_subtask(parent_id, data, tag=state.tag)

    if state.json_output:
        emit_json(task.to_record())
    else:
        console.print(f"[green]Created subtask {task.id}:[/green] {task.title}")


@app.command()
def show(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
) -> None:
    """
    Show one task.
    """
    state = get_state(ctx)
    with handle_errors(state):
        task = state.tasks.get_task(task_id, tag=state.tag)

    if state.json_output:
        emit_json(task.to_record())
    else:
        show_task(task)


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    priority: str | None = typer.Option(None, "--priority", "-p", help="Filter by priority"),
    task_type: str | None = typer.Option(None, "--type", help="Filter by type"),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="Assignee id or name"),
    labels: list[str] = typer.Option([], "--label", "-l", help="Match any label"),
    search: str | None = typer.Option(None, "--search", "-q", help="Text search"),
) -> None:
    """
    List tasks (subtasks follow their parent).
    """
    state = get_state(ctx)
    with handle_errors(state):
        try:
            filters = TaskFilters(
                status=status,
                priority=priority,
                type=task_type,
                assignee=assignee,
                tags=labels,
                search=search,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid filter: {e}") from e
        tasks = state.tasks.list_tasks(filters, tag=state.tag)

    if state.json_output:
        emit_json([task.model_dump(mode="json", by_alias=True, exclude_none=True,
                                   exclude={"subtasks"}) for task in tasks])
        return

    if not tasks:
        console.print("[dim]No tasks found[/dim]")
        return
    console.print(tasks_table(tasks, f"Tasks ({state.tag})"))


@app.command()
def update(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    description: str | None = typer.Option(None, "--description", "-D", help="New description"),
    priority: str | None = typer.Option(None, "--priority", "-p", help="New priority"),
    effort: int | None = typer.Option(None, "--effort", "-e", help="New effort 1-5"),
    details: str | None = typer.Option(None, "--details", help="New details"),
    notes: str | None = typer.Option(None, "--notes", help="New notes"),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="New assignee"),
    labels: list[str] = typer.Option([], "--label", "-l", help="Replace labels"),
    depends: list[str] = typer.Option([], "--depends", help="Replace dependencies"),
    clear_labels: bool = typer.Option(False, "--clear-labels", help="Remove every label"),
    clear_depends: bool = typer.Option(
        False, "--clear-depends", help="Remove every dependency"
    ),
) -> None:
    """
    Update fields of a task.
    """
    state = get_state(ctx)
    patch = build_task_data(
        title=title,
        description=description,
        priority=priority,
        effort=effort,
        details=details,
        notes=notes,
        assignee=assignee,
        tags=labels,
        dependencies=depends,
    )
    with handle_errors(state):
        if clear_labels and labels:
            raise ValidationError("Use either --label or --clear-labels", fields=["tags"])
        if clear_depends and depends:
            raise ValidationError(
                "Use either --depends or --clear-depends", fields=["dependencies"]
            )
        if clear_labels:
            patch["tags"] = []
        if clear_depends:
            patch["dependencies"] = []
        if not patch:
            raise ValidationError("Nothing to update")
        task = state.tasks.update_task(task_id, patch, tag=state.tag)

    if state.json_output:
        emit_json(task.to_record())
    else:
        console.print(f"[green]Updated task {task.id}[/green] ({', '.join(sorted(patch))})")


@app.command()
def status(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
    new_status: str = typer.Argument(..., help="New status"),
) -> None:
    """
    Set the status of a task.
    """
    state = get_state(ctx)
    with handle_errors(state):
        task = state.tasks.update_task_status(task_id, new_status, tag=state.tag)

    if state.json_output:
        emit_json(task.to_record())
    else:
        console.print(f"Task {task.id} is now {status_text(task.status)}")


@app.command()
def delete(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Delete even if other tasks depend on it (removes those references)",
    ),
) -> None:
    """
    Delete a task and its subtasks.
    """
    state = get_state(ctx)
    with handle_errors(state):
        removed = state.tasks.delete_task(task_id, tag=state.tag, force=force)

    if state.json_output:
        emit_json({"deleted": removed})
    else:
        console.print(f"[green]Deleted {len(removed)} task(s):[/green] {', '.join(removed)}")


@app.command()
def stats(ctx: typer.Context) -> None:
    """
    Show task counts for the tag.
    """
    state = get_state(ctx)
    with handle_errors(state):
        result = state.tasks.get_stats(tag=state.tag)

    if state.json_output:
        emit_json(result.model_dump())
        return

    table = Table(title=f"Task Statistics ({state.tag})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="bold")
    table.add_row("Total", str(result.total))
    table.add_row("Completed", f"{result.completed} ({result.completion_rate:.0%})")
    table.add_row("In progress", str(result.in_progress))
    table.add_row("Blocked", str(result.blocked))
    table.add_row("Overdue", str(result.overdue))
    for name, count in sorted(result.by_priority.items()):
        table.add_row(f"Priority {name}", str(count))
    console.print(table)


@app.command()
def export(
    ctx: typer.Context,
    fmt: str = typer.Option("json", "--format", "-f", help="json, csv or markdown"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """
    Export the tag's tasks.
    """
    state = get_state(ctx)
    with handle_errors(state):
        content = state.tasks.export_tasks(fmt, tag=state.tag)
        if output:
            try:
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_text(content, encoding="utf-8")
            except OSError as e:
                raise StorageError(f"Failed to write {output}", path=output, cause=e) from e

    if output:
        console.print(f"[green]Saved to {output}[/green]")
    else:
        typer.echo(content, nl=False)
