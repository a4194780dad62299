"""
``flowspine dlq`` CLI: dead-letter queue commands.
"""

from __future__ import annotations

from contextlib import closing

import typer

from flowspine.cli.utils import make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_dead_letters(
    workflow: str | None = typer.Option(None, "--workflow", "-w"),
    include_resolved: bool = typer.Option(False, "--all", help="Include resolved entries"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List dead-letter entries (unresolved by default)."""
    from flowspine.ops.dlq import list_dead_letters as _list
    from flowspine.ops.requests import ListDeadLettersRequest

    ctx, container = make_context(database)
    request = ListDeadLettersRequest(
        include_resolved=include_resolved, workflow_id=workflow, limit=limit, offset=offset
    )
    with closing(container):
        result = _list(ctx, request)
    output_paged(result, as_json=json_out, title="Dead Letters")


@app.command("show")
def show(
    entry_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one dead-letter entry."""
    from flowspine.ops.dlq import get_dead_letter

    ctx, container = make_context(database)
    with closing(container):
        result = get_dead_letter(ctx, entry_id)
    output_result(result, as_json=json_out, title=f"Dead letter: {entry_id}")


@app.command("requeue")
def requeue(
    entry_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start a fresh run from a dead-letter entry."""
    from flowspine.ops.dlq import requeue_dead_letter

    ctx, container = make_context(database)
    with closing(container):
        result = requeue_dead_letter(ctx, entry_id)
    output_result(result, as_json=json_out, title="Requeued")


@app.command("resolve")
def resolve(
    entry_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    action: str = typer.Option("dismissed", "--action", "-a", help="Resolution to record"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resolve an entry without re-running it."""
    from flowspine.ops.dlq import resolve_dead_letter
    from flowspine.ops.requests import ResolveDeadLetterRequest

    ctx, container = make_context(database)
    with closing(container):
        result = resolve_dead_letter(ctx, ResolveDeadLetterRequest(entry_id=entry_id, action=action))
    output_result(result, as_json=json_out, title="Resolved")
