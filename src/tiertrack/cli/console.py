"""Console output helpers shared by the command modules."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from tiertrack.todos import TodoManager

T = TypeVar("T")

# Resolves sys.stdout at print time, so CliRunner captures it
console = Console()

PRIORITY_STYLES = {
    "critical": "bold red",
    "high": "yellow",
    "medium": "green",
    "low": "dim",
}

STATUS_STYLES = {
    "pending": "cyan",
    "in_progress": "yellow",
    "completed": "green",
    "cancelled": "dim",
    "blocked": "red",
    "conflict": "red",
}


def error(msg: str) -> None:
    """Print an error message in red."""
    console.print(f"[red]{msg}[/red]")


def warning(msg: str) -> None:
    """Print a warning message in yellow."""
    console.print(f"[yellow]{msg}[/yellow]")


def success(msg: str) -> None:
    """Print a success message in green."""
    console.print(f"[green]{msg}[/green]")


def info(msg: str) -> None:
    """Print an info message in cyan."""
    console.print(f"[cyan]{msg}[/cyan]")


def dim(msg: str) -> None:
    """Print a dimmed message."""
    console.print(f"[dim]{msg}[/dim]")


def styled(value: str, styles: dict[str, str]) -> str:
    style = styles.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def create_table(title: str, columns: list[tuple[str, str | dict]]) -> Table:
    """Build a left-titled table.

    Each column is ``(header, style)`` or ``(header, add_column kwargs)``;
    an empty style means unstyled.
    """
    table = Table(title=title, title_justify="left")
    for header, spec in columns:
        kwargs = spec if isinstance(spec, dict) else {"style": spec or None}
        table.add_column(header, **kwargs)
    return table


def run_guarded(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Call ``fn``; rejected operations print in red and exit 1."""
    from tiertrack.todos.errors import TodoError

    try:
        return fn(*args, **kwargs)
    except TodoError as e:
        error(e.message)
        for detail in e.details:
            prefix = f"{detail.field}: " if detail.field else ""
            dim(f"  {prefix}{detail.reason}")
            if detail.suggestion:
                dim(f"    hint: {detail.suggestion}")
        raise typer.Exit(1) from None
    except ValueError as e:
        error(str(e))
        raise typer.Exit(1) from None


def create_manager() -> TodoManager:
    from tiertrack.todos import create_todo_manager

    return create_todo_manager()
