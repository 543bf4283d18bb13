"""Configuration management commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import click
import typer

from tiertrack.cli.console import console, create_table, dim, error, success

if TYPE_CHECKING:
    from tiertrack.config import TiertrackConfig


def register(app: typer.Typer) -> None:
    """Register the config command."""

    @app.command()
    def config(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: show, validate, paths"),
        ] = None,
        path: Annotated[
            Path | None,
            typer.Option(
                "--path",
                "-p",
                help="Config file to read (default: $TIERTRACK_HOME/config.toml)",
            ),
        ] = None,
    ) -> None:
        """Inspect and validate configuration."""
        if action is None:
            click.echo(click.get_current_context().get_help())
            raise typer.Exit(0)

        handler = _ACTIONS.get(action)
        if handler is None:
            error(f"Unknown action: {action}")
            console.print(f"Valid actions: {', '.join(_ACTIONS)}")
            raise typer.Exit(1)

        from tiertrack.config.paths import get_config_path

        handler(path.expanduser() if path else get_config_path())


def _require_file(config_path: Path) -> None:
    if not config_path.exists():
        error(f"Config file not found: {config_path}")
        dim("Built-in defaults apply until the file exists")
        raise typer.Exit(1)


def _show(config_path: Path) -> None:
    from rich.syntax import Syntax

    _require_file(config_path)
    console.print(f"[bold]{config_path}[/bold]\n")
    console.print(Syntax(config_path.read_text(), "toml", line_numbers=True))


def _validate(config_path: Path) -> None:
    from pydantic import ValidationError

    from tiertrack.config import load_config

    _require_file(config_path)
    try:
        loaded = load_config(config_path)
    except ValidationError as e:
        error("Configuration validation failed:")
        for err in e.errors():
            where = ".".join(str(part) for part in err["loc"]) or "(root)"
            console.print(f"  [yellow]{where}[/yellow]: {err['msg']}")
        raise typer.Exit(1) from None
    except (OSError, ValueError) as e:
        # tomllib.TOMLDecodeError is a ValueError
        error(f"Could not read {config_path}: {e}")
        raise typer.Exit(1) from None

    success("Configuration is valid!")
    console.print(_summary_table(loaded))


def _summary_table(loaded: TiertrackConfig):
    table = create_table("Effective settings", [("Setting", "cyan"), ("Value", "green")])
    table.add_row("data_dir", str(loaded.data_dir))
    table.add_row("author", loaded.author)
    table.add_row("log_level", loaded.log_level or "-")
    table.add_row("scope.mode", loaded.scope.mode)
    table.add_row("rollback.blocking_severity", loaded.rollback.blocking_severity)
    overrides = {
        name: severity
        for name, severity in sorted(loaded.rollback.field_severity.items())
        if severity != "medium"
    }
    table.add_row(
        "rollback.field_severity",
        ", ".join(f"{name}={severity}" for name, severity in overrides.items()) or "-",
    )
    table.add_row("triggers.recent_hours", f"{loaded.triggers.recent_hours:g}")
    table.add_row(
        "triggers.default_suppress_hours", f"{loaded.triggers.default_suppress_hours:g}"
    )
    return table


def _paths(_config_path: Path) -> None:
    from tiertrack.config.paths import get_all_paths

    table = create_table("Paths", [("Name", "cyan"), ("Path", ""), ("Exists", "dim")])
    for name, value in get_all_paths().items():
        table.add_row(name, str(value), "yes" if value.exists() else "no")
    console.print(table)


_ACTIONS = {
    "show": _show,
    "validate": _validate,
    "paths": _paths,
}
