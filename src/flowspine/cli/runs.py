"""
``flowspine runs`` CLI: workflow run commands.
"""

from __future__ import annotations

from contextlib import closing

import typer

from flowspine.cli.utils import make_context, output_paged, output_result, parse_json_option

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    data: str | None = typer.Option(None, "--data", help="Trigger data as a JSON object"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start a run and execute it until it suspends or finishes."""
    from flowspine.ops.requests import StartRunRequest
    from flowspine.ops.runs import start_run

    trigger_data = parse_json_option(data, option="--data")
    ctx, container = make_context(database)
    with closing(container):
        result = start_run(ctx, StartRunRequest(workflow_id=workflow_id, trigger_data=trigger_data))
    output_result(result, as_json=json_out, title="Run")


@app.command("list")
def list_runs(
    workflow: str | None = typer.Option(None, "--workflow", "-w"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List runs, newest first."""
    from flowspine.ops.requests import ListRunsRequest
    from flowspine.ops.runs import list_runs as _list

    ctx, container = make_context(database)
    request = ListRunsRequest(workflow_id=workflow, status=status, limit=limit, offset=offset)
    with closing(container):
        result = _list(ctx, request)
    output_paged(result, as_json=json_out, title="Runs")


@app.command("show")
def show(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a run with its step logs and signals."""
    from flowspine.ops.runs import get_run

    ctx, container = make_context(database)
    with closing(container):
        result = get_run(ctx, run_id)
    output_result(result, as_json=json_out, title=f"Run: {run_id}")


@app.command("logs")
def logs(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List step log entries for a run in execution order."""
    from flowspine.ops.runs import list_step_logs

    ctx, container = make_context(database)
    with closing(container):
        result = list_step_logs(ctx, run_id)
    output_result(result, as_json=json_out, title="Step Logs")


@app.command("resume")
def resume(
    run_id: str = typer.Argument(..., help="Run ID"),
    data: str | None = typer.Option(None, "--data", help="Signal data as a JSON object"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resume a retrying or awaiting run now."""
    from flowspine.ops.requests import ResumeRunRequest
    from flowspine.ops.runs import resume_run

    signal_data = parse_json_option(data, option="--data") if data else None
    ctx, container = make_context(database)
    with closing(container):
        result = resume_run(ctx, ResumeRunRequest(run_id=run_id, signal_data=signal_data))
    output_result(result, as_json=json_out, title="Run")


@app.command("cancel")
def cancel(
    run_id: str = typer.Argument(..., help="Run ID"),
    reason: str | None = typer.Option(None, "--reason", "-r"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel a non-terminal run."""
    from flowspine.ops.requests import CancelRunRequest
    from flowspine.ops.runs import cancel_run

    ctx, container = make_context(database)
    with closing(container):
        result = cancel_run(ctx, CancelRunRequest(run_id=run_id, reason=reason))
    output_result(result, as_json=json_out, title="Cancelled")


@app.command("compensate")
def compensate(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run recorded compensation actions of a finished run in reverse order."""
    from flowspine.ops.runs import compensate_run

    ctx, container = make_context(database)
    with closing(container):
        result = compensate_run(ctx, run_id)
    output_result(result, as_json=json_out, title="Compensated")
