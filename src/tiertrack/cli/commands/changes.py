"""Change log inspection commands."""

from __future__ import annotations

from typing import Annotated

import typer

from tiertrack.cli.console import console, create_manager, create_table, run_guarded, warning

app = typer.Typer(
    name="changes",
    help="Inspect the append-only change log.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="changes")


@app.command("list")
def list_cmd(
    feature: Annotated[str, typer.Argument(help="Feature name")],
    todo_id: Annotated[
        str | None, typer.Option("--todo", "-t", help="Only changes to this todo")
    ] = None,
    change_type: Annotated[
        str | None, typer.Option("--type", help="Only this change type")
    ] = None,
    since_hours: Annotated[
        float | None, typer.Option("--since-hours", help="Only the last N hours")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max entries")] = 20,
) -> None:
    """List change log entries, newest first."""
    run_guarded(
        _changes_list,
        feature,
        todo_id=todo_id,
        change_type=change_type,
        since_hours=since_hours,
        limit=limit,
    )


@app.command("show")
def show_cmd(
    feature: Annotated[str, typer.Argument(help="Feature name")],
    entry_id: Annotated[str, typer.Argument(help="Change entry ID")],
) -> None:
    """Show one change entry as JSON."""
    run_guarded(_changes_show, feature, entry_id)


def _changes_list(
    feature: str,
    *,
    todo_id: str | None,
    change_type: str | None,
    since_hours: float | None,
    limit: int,
) -> None:
    from datetime import timedelta

    from tiertrack.todos.types import ChangeType, utc_now

    manager = create_manager()
    since = utc_now() - timedelta(hours=since_hours) if since_hours is not None else None
    entries = manager.changelog.query(
        feature,
        todo_id=todo_id,
        change_type=ChangeType(change_type) if change_type else None,
        since=since,
        limit=limit,
    )
    if not entries:
        warning("No changes found")
        return

    table = create_table(
        f"Changes: {feature}",
        [
            ("#", {"justify": "right", "style": "dim"}),
            ("Time", "dim"),
            ("Type", "cyan"),
            ("Todo", ""),
            ("Fields", ""),
            ("Reason", "dim"),
        ],
    )
    for entry in entries:
        when = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S") if entry.timestamp else "-"
        table.add_row(
            str(entry.sequence),
            when,
            entry.change_type.value,
            entry.todo_id or "-",
            ", ".join(entry.changed_fields()) or "-",
            (entry.reason or "")[:40],
        )
    console.print(table)


def _changes_show(feature: str, entry_id: str) -> None:
    import json

    from tiertrack.todos.errors import NotFoundError

    manager = create_manager()
    entry = manager.changelog.get(feature, entry_id)
    if entry is None:
        raise NotFoundError(f"change entry not found: {entry_id}")
    console.print_json(json.dumps(entry.to_dict()))
