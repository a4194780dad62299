"""
``flowspine workflows`` CLI: workflow definition commands.
"""

from __future__ import annotations

import json
from contextlib import closing
from pathlib import Path

import typer

from flowspine.cli.utils import err_console, make_context, output_paged, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("register")
def register(
    path: Path = typer.Argument(..., help="JSON file holding the workflow definition"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate without storing"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate and store a workflow definition."""
    from flowspine.ops.requests import RegisterWorkflowRequest
    from flowspine.ops.workflows import register_workflow

    try:
        definition = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        err_console.print(f"[red]Error: cannot read {path}: {e}[/red]")
        raise typer.Exit(1) from e

    ctx, container = make_context(database, dry_run=dry_run)
    with closing(container):
        result = register_workflow(ctx, RegisterWorkflowRequest(definition=definition))
    output_result(result, as_json=json_out, title="Registered")


@app.command("list")
def list_workflows(
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List registered workflows."""
    from flowspine.ops.workflows import list_workflows as _list

    ctx, container = make_context(database)
    with closing(container):
        result = _list(ctx, limit=limit, offset=offset)
    output_paged(result, as_json=json_out, title="Workflows")


@app.command("show")
def show(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a workflow definition."""
    from flowspine.ops.workflows import get_workflow

    ctx, container = make_context(database)
    with closing(container):
        result = get_workflow(ctx, workflow_id)
    output_result(result, as_json=json_out, title=f"Workflow: {workflow_id}")


@app.command("dry-run")
def dry_run(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check a stored workflow against the step registry without running it."""
    from flowspine.ops.workflows import dry_run_workflow

    ctx, container = make_context(database)
    with closing(container):
        result = dry_run_workflow(ctx, workflow_id)
    output_result(result, as_json=json_out, title=f"Dry run: {workflow_id}")
