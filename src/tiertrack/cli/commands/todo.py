"""Todo management commands."""

from __future__ import annotations

from typing import Annotated

import typer

from tiertrack.cli.console import (
    STATUS_STYLES,
    console,
    create_manager,
    create_table,
    dim,
    run_guarded,
    styled,
    success,
    warning,
)

app = typer.Typer(
    name="todo",
    help="Manage tiered todos.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="todo")


FeatureArg = Annotated[str, typer.Argument(help="Feature name")]
TodoIdArg = Annotated[
    str, typer.Argument(help="Todo ID (feature-<name>, phase-P, session-P.S, task-P.S.T)")
]
ReasonOpt = Annotated[str | None, typer.Option("--reason", "-r", help="Why the change was made")]


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


@app.command("list")
def list_cmd(
    feature: FeatureArg,
    tier: Annotated[
        str | None, typer.Option("--tier", "-t", help="Only this tier")
    ] = None,
    status: Annotated[
        str | None, typer.Option("--status", "-s", help="Only this status")
    ] = None,
) -> None:
    """List todos in a feature."""
    run_guarded(_todo_list, feature, tier=tier, status=status)


@app.command("show")
def show_cmd(feature: FeatureArg, todo_id: TodoIdArg) -> None:
    """Show one todo with its citations and scope."""
    run_guarded(_todo_show, feature, todo_id)


@app.command("add")
def add_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    title: Annotated[str, typer.Argument(help="Todo title")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="Todo description")
    ] = "",
    parent: Annotated[
        str | None,
        typer.Option("--parent", "-p", help="Parent ID (default: derived from the ID)"),
    ] = None,
    tags: Annotated[
        list[str] | None, typer.Option("--tag", help="Tag (repeatable)")
    ] = None,
    blocked_by: Annotated[
        list[str] | None, typer.Option("--blocked-by", help="Blocking todo ID (repeatable)")
    ] = None,
    reason: ReasonOpt = None,
) -> None:
    """Create a todo."""
    run_guarded(
        _todo_add,
        feature,
        todo_id,
        title,
        description=description,
        parent=parent,
        tags=tags or [],
        blocked_by=blocked_by or [],
        reason=reason,
    )


@app.command("edit")
def edit_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    title: Annotated[str | None, typer.Option("--title", help="New title")] = None,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="New description")
    ] = None,
    tags: Annotated[
        list[str] | None, typer.Option("--tag", help="Replace tags (repeatable)")
    ] = None,
    reason: ReasonOpt = None,
) -> None:
    """Update a todo's title, description or tags."""
    if title is None and description is None and tags is None:
        warning("Nothing to update: pass --title, --description or --tag")
        raise typer.Exit(1)
    run_guarded(
        _todo_edit,
        feature,
        todo_id,
        title=title,
        description=description,
        tags=tags,
        reason=reason,
    )


@app.command("status")
def status_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    status: Annotated[
        str,
        typer.Argument(help="pending, in_progress, completed, cancelled or blocked"),
    ],
    reason: ReasonOpt = None,
    propagate: Annotated[
        bool, typer.Option("--propagate", help="Cite the change on dependent todos")
    ] = False,
) -> None:
    """Change a todo's status."""
    run_guarded(_todo_status, feature, todo_id, status, reason=reason, propagate=propagate)


@app.command("move")
def move_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    parent: Annotated[str, typer.Argument(help="New parent ID")],
    reason: ReasonOpt = None,
) -> None:
    """Move a todo under a different parent."""
    run_guarded(_todo_move, feature, todo_id, parent, reason=reason)


@app.command("delete")
def delete_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    reason: ReasonOpt = None,
) -> None:
    """Delete a leaf todo (logged before removal)."""
    run_guarded(_todo_delete, feature, todo_id, reason=reason)


@app.command("summary")
def summary_cmd(feature: FeatureArg, todo_id: TodoIdArg) -> None:
    """Summarize progress of a todo's children."""
    run_guarded(_todo_summary, feature, todo_id)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


def _todo_list(feature: str, *, tier: str | None, status: str | None) -> None:
    from tiertrack.todos.types import TodoStatus, TodoTier

    manager = create_manager()
    todos = manager.store.list_all(feature)
    if tier is not None:
        todos = [t for t in todos if t.tier == TodoTier(tier)]
    if status is not None:
        todos = [t for t in todos if t.status == TodoStatus(status)]

    if not todos:
        warning("No todos found")
        return

    table = create_table(
        f"Todos: {feature}",
        [
            ("ID", "dim"),
            ("Status", ""),
            ("Title", ""),
            ("Parent", "dim"),
            ("Citations", {"justify": "right"}),
        ],
    )
    for todo in todos:
        title = todo.title[:50] + "..." if len(todo.title) > 50 else todo.title
        active = sum(1 for c in todo.citations if not c.is_dismissed and not c.is_reviewed)
        table.add_row(
            todo.id,
            styled(todo.status.value, STATUS_STYLES),
            title,
            todo.parent_id or "-",
            str(active) if active else "[dim]0[/dim]",
        )
    console.print(table)
    console.print(f"\n[dim]Total: {len(todos)} todo(s)[/dim]")


def _todo_show(feature: str, todo_id: str) -> None:
    manager = create_manager()
    todo = manager.store.require(feature, todo_id)

    console.print(f"[bold]{todo.id}[/bold] {todo.title}")
    console.print(f"  tier: {todo.tier}   status: {styled(todo.status.value, STATUS_STYLES)}")
    console.print(f"  parent: {todo.parent_id or '-'}")
    if todo.description:
        console.print(f"  {todo.description}")
    if todo.blocked_by:
        console.print(f"  blocked by: {', '.join(todo.blocked_by)}")
    if todo.blocks:
        console.print(f"  blocks: {', '.join(todo.blocks)}")
    if todo.tags:
        console.print(f"  tags: {', '.join(todo.tags)}")
    if todo.scope:
        dim(
            f"  scope: {todo.scope.abstraction} / {todo.scope.detail_level}"
            + (f" (from {todo.scope.inherited_from})" if todo.scope.inherited_from else "")
        )
    for violation in todo.metadata.get("scope_violations", []):
        warning(f"  scope: {violation.get('description')}")
    active = [c for c in todo.citations if not c.is_dismissed]
    if active:
        console.print(f"  citations: {len(active)} active")


def _todo_add(
    feature: str,
    todo_id: str,
    title: str,
    *,
    description: str,
    parent: str | None,
    tags: list[str],
    blocked_by: list[str],
    reason: str | None,
) -> None:
    manager = create_manager()
    todo = manager.create_todo(
        feature,
        todo_id,
        title,
        description,
        parent_id=parent,
        tags=tags,
        blocked_by=blocked_by,
        reason=reason,
    )
    success(f"Created {todo.id}: {todo.title[:50]}")
    for violation in todo.metadata.get("scope_violations", []):
        warning(f"scope: {violation.get('description')}")


def _todo_edit(
    feature: str,
    todo_id: str,
    *,
    title: str | None,
    description: str | None,
    tags: list[str] | None,
    reason: str | None,
) -> None:
    manager = create_manager()
    todo = manager.update_todo(
        feature, todo_id, title=title, description=description, tags=tags, reason=reason
    )
    success(f"Updated {todo.id}")


def _todo_status(
    feature: str, todo_id: str, status: str, *, reason: str | None, propagate: bool
) -> None:
    from tiertrack.todos.types import ChangeType, TodoStatus

    manager = create_manager()
    todo = manager.set_status(feature, todo_id, TodoStatus(status), reason=reason)
    success(f"{todo.id} is now {todo.status.value}")
    if propagate:
        entries = manager.changelog.query(
            feature, todo_id=todo_id, change_type=ChangeType.TODO_STATUS_CHANGED, limit=1
        )
        if entries:
            citations = manager.propagate(feature, entries[0])
            dim(f"Cited on {len(citations)} dependent todo(s)")


def _todo_move(feature: str, todo_id: str, parent: str, *, reason: str | None) -> None:
    manager = create_manager()
    todo = manager.move_todo(feature, todo_id, parent, reason=reason)
    success(f"Moved {todo.id} under {todo.parent_id}")


def _todo_delete(feature: str, todo_id: str, *, reason: str | None) -> None:
    manager = create_manager()
    entry = manager.delete_todo(feature, todo_id, reason=reason)
    success(f"Deleted {todo_id} (logged as {entry.id})")


def _todo_summary(feature: str, todo_id: str) -> None:
    from tiertrack.todos.summary import generate_summary

    manager = create_manager()
    todo = manager.store.require(feature, todo_id)
    summary = generate_summary(manager.store, feature, todo)
    progress = summary.progress

    console.print(f"[bold]{summary.title}[/bold] ({styled(summary.status.value, STATUS_STYLES)})")
    console.print(
        f"  {progress.completed}/{progress.total} completed, "
        f"{progress.in_progress} in progress, {progress.pending} pending"
    )
    for objective in summary.objectives:
        console.print(f"  - {objective}")
    if summary.key_dependencies:
        dim(f"  depends on: {', '.join(summary.key_dependencies)}")
    if summary.next_steps:
        console.print("  next:")
        for step in summary.next_steps:
            console.print(f"    {step}")
