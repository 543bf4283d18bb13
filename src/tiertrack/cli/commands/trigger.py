"""Trigger commands: inspect, detect and suppress junction triggers."""

from __future__ import annotations

from typing import Annotated

import typer

from tiertrack.cli.console import (
    PRIORITY_STYLES,
    console,
    create_manager,
    create_table,
    dim,
    info,
    run_guarded,
    styled,
    success,
    warning,
)

app = typer.Typer(
    name="trigger",
    help="Evaluate the triggers that surface citations at workflow junctions.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="trigger")


FeatureArg = Annotated[str, typer.Argument(help="Feature name")]
TriggerIdArg = Annotated[str, typer.Argument(help="Trigger ID")]


@app.command("list")
def list_cmd(feature: FeatureArg) -> None:
    """List trigger definitions and whether they are suppressed."""
    run_guarded(_trigger_list, feature)


@app.command("detect")
def detect_cmd(
    feature: FeatureArg,
    junction: Annotated[str, typer.Argument(help="Junction, e.g. session-start")],
    todo_id: Annotated[
        str, typer.Option("--todo", "-t", help="Todo being worked on")
    ],
) -> None:
    """Show triggers that fire at a junction and the citations they surface."""
    run_guarded(_trigger_detect, feature, junction, todo_id)


@app.command("suppress")
def suppress_cmd(
    feature: FeatureArg,
    trigger_id: TriggerIdArg,
    hours: Annotated[
        float | None,
        typer.Option("--hours", "-H", help="Duration (default from config)"),
    ] = None,
) -> None:
    """Silence a suppressible trigger for a while."""
    run_guarded(_trigger_suppress, feature, trigger_id, hours)


@app.command("unsuppress")
def unsuppress_cmd(feature: FeatureArg, trigger_id: TriggerIdArg) -> None:
    """Lift a suppression early."""
    run_guarded(_trigger_unsuppress, feature, trigger_id)


def _trigger_list(feature: str) -> None:
    manager = create_manager()
    table = create_table(
        f"Triggers: {feature}",
        [
            ("ID", "dim"),
            ("Junction", "cyan"),
            ("Priority", ""),
            ("Conditions", ""),
            ("Action", ""),
            ("Suppressed", ""),
        ],
    )
    for trigger in manager.triggers.definitions(feature):
        if not trigger.suppressible:
            suppressed = "[dim]never[/dim]"
        elif manager.triggers.is_suppressed(feature, trigger.id):
            suppressed = "[yellow]yes[/yellow]"
        else:
            suppressed = "no"
        table.add_row(
            trigger.id,
            trigger.junction.value,
            styled(trigger.priority.value, PRIORITY_STYLES),
            " and ".join(c.type.value for c in trigger.conditions),
            trigger.action.value,
            suppressed,
        )
    console.print(table)


def _trigger_detect(feature: str, junction: str, todo_id: str) -> None:
    from tiertrack.todos.triggers import TriggerContext
    from tiertrack.todos.types import CitationContext

    manager = create_manager()
    manager.store.require(feature, todo_id)
    context = TriggerContext(todo_id=todo_id)
    fired = manager.triggers.detect(feature, CitationContext(junction), context)
    if not fired:
        dim(f"No triggers fired at {junction}")
        return

    for trigger in fired:
        info(f"{trigger.name} ({trigger.id})")
        for citation in manager.triggers.activate(feature, trigger, context):
            console.print(
                f"  {styled(citation.priority.value, PRIORITY_STYLES)} "
                f"{citation.id} {citation.type.value} (change {citation.change_log_id})"
            )
            if citation.metadata.reason:
                dim(f"    {citation.metadata.reason}")


def _trigger_suppress(feature: str, trigger_id: str, hours: float | None) -> None:
    manager = create_manager()
    suppression = manager.triggers.suppress(feature, trigger_id, hours)
    until = suppression.suppressed_until.strftime("%Y-%m-%d %H:%M")
    success(f"Suppressed {trigger_id} until {until} UTC")


def _trigger_unsuppress(feature: str, trigger_id: str) -> None:
    manager = create_manager()
    if manager.triggers.unsuppress(feature, trigger_id):
        success(f"Unsuppressed {trigger_id}")
    else:
        warning(f"{trigger_id} was not suppressed")
