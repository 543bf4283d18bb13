"""Rollback commands: snapshots, apply, history and cancel."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import typer

from tiertrack.cli.console import (
    PRIORITY_STYLES,
    STATUS_STYLES,
    console,
    create_manager,
    create_table,
    dim,
    error,
    run_guarded,
    styled,
    success,
    warning,
)

if TYPE_CHECKING:
    from tiertrack.todos.types import Rollback

app = typer.Typer(
    name="rollback",
    help="Restore todos to earlier snapshots.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="rollback")


FeatureArg = Annotated[str, typer.Argument(help="Feature name")]
TodoIdArg = Annotated[str, typer.Argument(help="Todo ID")]


@app.command("states")
def states_cmd(feature: FeatureArg, todo_id: TodoIdArg) -> None:
    """List snapshots of a todo, newest first."""
    run_guarded(_rollback_states, feature, todo_id)


@app.command("apply")
def apply_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    state_id: Annotated[str, typer.Argument(help="Snapshot ID to restore")],
    fields: Annotated[
        list[str] | None,
        typer.Option("--field", "-f", help="Restore only this field (repeatable)"),
    ] = None,
    reason: Annotated[
        str | None, typer.Option("--reason", "-r", help="Why the rollback is needed")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Override conflicting later changes")
    ] = False,
    skip_conflicts: Annotated[
        bool, typer.Option("--skip-conflicts", help="Keep current values where changes conflict")
    ] = False,
) -> None:
    """Restore a todo (or selected fields) to a snapshot."""
    run_guarded(
        _rollback_apply,
        feature,
        todo_id,
        state_id,
        fields=fields,
        reason=reason,
        force=force,
        skip_conflicts=skip_conflicts,
    )


@app.command("history")
def history_cmd(
    feature: FeatureArg,
    todo_id: Annotated[
        str | None, typer.Option("--todo", "-t", help="Only rollbacks of this todo")
    ] = None,
) -> None:
    """List recorded rollbacks."""
    run_guarded(_rollback_history, feature, todo_id)


@app.command("cancel")
def cancel_cmd(
    feature: FeatureArg,
    rollback_id: Annotated[str, typer.Argument(help="Rollback ID")],
) -> None:
    """Cancel a rollback held back by conflicts."""
    run_guarded(_rollback_cancel, feature, rollback_id)


def _rollback_states(feature: str, todo_id: str) -> None:
    manager = create_manager()
    states = manager.rollback.get_states(feature, todo_id)
    if not states:
        warning(f"No snapshots for {todo_id}")
        return

    table = create_table(
        f"Snapshots: {todo_id}",
        [
            ("ID", "dim"),
            ("Time", "dim"),
            ("Status", ""),
            ("Title", ""),
            ("Before change", "dim"),
        ],
    )
    for state in states:
        table.add_row(
            state.id,
            state.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            styled(state.state.status.value, STATUS_STYLES),
            state.state.title[:50],
            state.change_log_id,
        )
    console.print(table)


def _rollback_apply(
    feature: str,
    todo_id: str,
    state_id: str,
    *,
    fields: list[str] | None,
    reason: str | None,
    force: bool,
    skip_conflicts: bool,
) -> None:
    manager = create_manager()
    if fields:
        if skip_conflicts:
            warning("--skip-conflicts is ignored with --field")
        rollback = manager.rollback.rollback_fields(
            feature, todo_id, state_id, fields, reason, force=force
        )
    else:
        rollback = manager.rollback.rollback(
            feature, todo_id, state_id, reason, force=force, skip_conflicts=skip_conflicts
        )
    _print_rollback(rollback)
    if rollback.status.value != "completed":
        dim("Re-run with --force or --skip-conflicts, or cancel it")
        raise typer.Exit(1)


def _print_rollback(rollback: Rollback) -> None:
    if rollback.status.value == "completed":
        success(f"Rolled back {rollback.todo_id} to {rollback.rolled_back_to} ({rollback.id})")
        if rollback.fields:
            dim(f"  fields: {', '.join(rollback.fields)}")
        if rollback.rolled_back_from:
            dim(f"  undo with snapshot {rollback.rolled_back_from}")
    else:
        error(f"Rollback {rollback.id} is {rollback.status.value}")
    for conflict in rollback.conflicts:
        resolution = f" -> {conflict.resolution}" if conflict.resolution else ""
        console.print(
            f"  {styled(conflict.severity.value, PRIORITY_STYLES)} "
            f"{conflict.field or '-'}: {conflict.description}{resolution}"
        )


def _rollback_history(feature: str, todo_id: str | None) -> None:
    manager = create_manager()
    rollbacks = manager.rollback.get_rollback_history(feature, todo_id)
    if not rollbacks:
        warning("No rollbacks recorded")
        return

    table = create_table(
        f"Rollbacks: {feature}",
        [
            ("ID", "dim"),
            ("Time", "dim"),
            ("Todo", ""),
            ("Type", "cyan"),
            ("Status", ""),
            ("Snapshot", "dim"),
            ("Conflicts", {"justify": "right"}),
        ],
    )
    for rollback in rollbacks:
        table.add_row(
            rollback.id,
            rollback.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            rollback.todo_id,
            rollback.type.value,
            styled(rollback.status.value, STATUS_STYLES),
            rollback.rolled_back_to,
            str(len(rollback.conflicts)),
        )
    console.print(table)


def _rollback_cancel(feature: str, rollback_id: str) -> None:
    manager = create_manager()
    rollback = manager.rollback.cancel(feature, rollback_id)
    success(f"Cancelled {rollback.id}")
