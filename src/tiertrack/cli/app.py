"""Main CLI application."""

from typing import Annotated

import typer

from tiertrack.cli.commands import (
    changes,
    citation,
    config,
    rollback,
    scope,
    todo,
    trigger,
)

app = typer.Typer(
    name="tiertrack",
    help="Tiertrack - audited tiered todos with citations and rollback",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show INFO logs on the console"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Show DEBUG logs on the console"),
    ] = False,
    log_file: Annotated[
        bool,
        typer.Option("--log-file", help="Also write JSONL logs under $TIERTRACK_HOME/logs"),
    ] = False,
) -> None:
    from tiertrack.logging import configure_logging

    level = "DEBUG" if debug else "INFO" if verbose else None
    if level is None:
        from tiertrack.config import load_config_or_default

        try:
            level = load_config_or_default().log_level
        except (OSError, ValueError):
            # commands report a broken config themselves
            level = None
    configure_logging(level=level, use_rich=True, log_to_file=log_file)


config.register(app)
todo.register(app)
changes.register(app)
citation.register(app)
trigger.register(app)
rollback.register(app)
scope.register(app)


if __name__ == "__main__":
    app()
