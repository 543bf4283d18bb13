"""Scope check command."""

from __future__ import annotations

from typing import Annotated

import typer

from tiertrack.cli.console import console, create_manager, dim, run_guarded, success, warning

app = typer.Typer(
    name="scope",
    help="Check todos against their tier's detail level.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="scope")


@app.command("check")
def check_cmd(
    feature: Annotated[str, typer.Argument(help="Feature name")],
    todo_id: Annotated[
        str | None, typer.Argument(help="Todo ID (default: every todo)")
    ] = None,
) -> None:
    """Report scope violations and suggested corrections."""
    run_guarded(_scope_check, feature, todo_id)


def _scope_check(feature: str, todo_id: str | None) -> None:
    manager = create_manager()
    if todo_id is not None:
        todos = [manager.store.require(feature, todo_id)]
    else:
        todos = manager.store.list_all(feature)

    found = 0
    for todo in todos:
        parent = manager.store.get(feature, todo.parent_id) if todo.parent_id else None
        result = manager.scope.validate(todo, parent)
        if result.valid:
            continue
        found += len(result.violations)
        warning(f"{todo.id} ({todo.tier})")
        for violation in result.violations:
            where = f"{violation.location}: " if violation.location else ""
            console.print(f"  {where}{violation.description}")
            if violation.excerpt:
                dim(f"    {violation.excerpt!r}")
        for correction in manager.scope.suggest_corrections(result.violations):
            target = correction.suggested_location or correction.suggested_summary
            dim(f"    fix: {correction.type}" + (f" -> {target}" if target else ""))

    if found:
        raise typer.Exit(1)
    success(f"No scope violations in {len(todos)} todo(s)")
