"""Citation commands: list, cite, review, dismiss, defer."""

from __future__ import annotations

from typing import Annotated

import typer

from tiertrack.cli.console import (
    PRIORITY_STYLES,
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
    name="citation",
    help="Review citations that link todos to the changes affecting them.",
    no_args_is_help=True,
)


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="citation")


FeatureArg = Annotated[str, typer.Argument(help="Feature name")]
TodoIdArg = Annotated[str, typer.Argument(help="Todo ID")]
CitationIdArg = Annotated[str, typer.Argument(help="Citation ID")]


@app.command("list")
def list_cmd(
    feature: FeatureArg,
    todo_id: Annotated[
        str | None, typer.Option("--todo", "-t", help="Only citations on this todo")
    ] = None,
    context: Annotated[
        str | None, typer.Option("--context", "-c", help="Only this junction")
    ] = None,
    min_priority: Annotated[
        str | None, typer.Option("--min-priority", help="low, medium, high or critical")
    ] = None,
    unreviewed: Annotated[
        bool, typer.Option("--unreviewed", "-u", help="Only unreviewed citations")
    ] = False,
    include_dismissed: Annotated[
        bool, typer.Option("--all", "-a", help="Include dismissed citations")
    ] = False,
) -> None:
    """List citations, highest priority first."""
    run_guarded(
        _citation_list,
        feature,
        todo_id=todo_id,
        context=context,
        min_priority=min_priority,
        unreviewed=unreviewed,
        include_dismissed=include_dismissed,
    )


@app.command("cite")
def cite_cmd(
    feature: FeatureArg,
    change_id: Annotated[str, typer.Argument(help="Change entry ID")],
    todo_ids: Annotated[list[str], typer.Argument(help="Todos to cite the change on")],
    context: Annotated[
        list[str] | None,
        typer.Option("--context", "-c", help="Junction to surface at (repeatable)"),
    ] = None,
) -> None:
    """Cite an existing change on one or more todos."""
    run_guarded(_citation_cite, feature, change_id, todo_ids, context or [])


@app.command("review")
def review_cmd(feature: FeatureArg, todo_id: TodoIdArg, citation_id: CitationIdArg) -> None:
    """Mark a citation as reviewed."""
    run_guarded(_citation_review, feature, todo_id, citation_id)


@app.command("dismiss")
def dismiss_cmd(feature: FeatureArg, todo_id: TodoIdArg, citation_id: CitationIdArg) -> None:
    """Dismiss a citation for good."""
    run_guarded(_citation_dismiss, feature, todo_id, citation_id)


@app.command("defer")
def defer_cmd(
    feature: FeatureArg,
    todo_id: TodoIdArg,
    citation_id: CitationIdArg,
    hours: Annotated[
        float, typer.Option("--hours", "-H", help="Hide from triggers for N hours")
    ] = 24.0,
) -> None:
    """Hide a citation from trigger activation for a while."""
    run_guarded(_citation_defer, feature, todo_id, citation_id, hours)


def _citation_list(
    feature: str,
    *,
    todo_id: str | None,
    context: str | None,
    min_priority: str | None,
    unreviewed: bool,
    include_dismissed: bool,
) -> None:
    from tiertrack.todos.citations import CitationQuery
    from tiertrack.todos.types import CitationContext, CitationPriority

    manager = create_manager()
    filters = CitationQuery(
        todo_id=todo_id,
        context=CitationContext(context) if context else None,
        min_priority=CitationPriority(min_priority) if min_priority else None,
        reviewed=False if unreviewed else None,
        include_dismissed=include_dismissed,
    )
    citations = manager.citations.query(feature, filters)
    if not citations:
        warning("No citations found")
        return

    owners = {c.id: t.id for t in manager.store.list_all(feature) for c in t.citations}
    table = create_table(
        f"Citations: {feature}",
        [
            ("ID", "dim"),
            ("Todo", ""),
            ("Priority", ""),
            ("Type", "cyan"),
            ("Change", "dim"),
            ("Junctions", ""),
            ("State", ""),
        ],
    )
    for citation in citations:
        if citation.is_dismissed:
            state = "[dim]dismissed[/dim]"
        elif citation.is_reviewed:
            state = "[green]reviewed[/green]"
        elif citation.is_deferred():
            state = "[cyan]deferred[/cyan]"
        else:
            state = "[yellow]open[/yellow]"
        table.add_row(
            citation.id,
            owners.get(citation.id, "-"),
            styled(citation.priority.value, PRIORITY_STYLES),
            citation.type.value,
            citation.change_log_id,
            ", ".join(c.value for c in citation.context),
            state,
        )
    console.print(table)
    console.print(f"\n[dim]Total: {len(citations)} citation(s)[/dim]")


def _citation_cite(
    feature: str, change_id: str, todo_ids: list[str], context: list[str]
) -> None:
    from tiertrack.todos.types import CitationContext

    manager = create_manager()
    junctions = [CitationContext(c) for c in context]
    citations = manager.citations.create_for_change(feature, change_id, todo_ids, junctions)
    if not citations:
        warning(f"{change_id} is unknown or not citation-worthy")
        return
    for citation in citations:
        success(f"Created {citation.id} ({citation.priority.value})")


def _citation_review(feature: str, todo_id: str, citation_id: str) -> None:
    manager = create_manager()
    citation = manager.citations.review(feature, todo_id, citation_id)
    success(f"Reviewed {citation.id}")


def _citation_dismiss(feature: str, todo_id: str, citation_id: str) -> None:
    manager = create_manager()
    citation = manager.citations.dismiss(feature, todo_id, citation_id)
    success(f"Dismissed {citation.id}")


def _citation_defer(feature: str, todo_id: str, citation_id: str, hours: float) -> None:
    from datetime import timedelta

    from tiertrack.todos.types import utc_now

    manager = create_manager()
    until = utc_now() + timedelta(hours=hours)
    citation = manager.citations.defer(feature, todo_id, citation_id, until)
    success(f"Deferred {citation.id}")
    dim(f"  until {until.strftime('%Y-%m-%d %H:%M')} UTC")
