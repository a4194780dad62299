"""
``flowspine signals`` CLI: emit signals to waiting runs.
"""

from __future__ import annotations

from contextlib import closing

import typer

from flowspine.cli.utils import make_context, output_result, parse_json_option

app = typer.Typer(no_args_is_help=True)


@app.command("emit")
def emit(
    run_id: str = typer.Argument(..., help="Run ID"),
    signal_type: str = typer.Argument(..., help="Signal type the run is waiting for"),
    data: str | None = typer.Option(None, "--data", help="Signal payload as a JSON object"),
    source: str = typer.Option("cli", "--source"),
    deliver: bool = typer.Option(False, "--deliver", help="Deliver now instead of on the next sweep"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Record a signal for a run."""
    from flowspine.ops.requests import EmitSignalRequest
    from flowspine.ops.signals import emit_signal

    payload = parse_json_option(data, option="--data")
    ctx, container = make_context(database)
    request = EmitSignalRequest(
        run_id=run_id, signal_type=signal_type, signal_data=payload, source=source, deliver=deliver
    )
    with closing(container):
        result = emit_signal(ctx, request)
    output_result(result, as_json=json_out, title="Signal")
