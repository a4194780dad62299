"""
``flowspine scheduler`` CLI: sweep commands.
"""

from __future__ import annotations

from contextlib import closing

import typer

from flowspine.cli.utils import console, make_context, output_result

app = typer.Typer(no_args_is_help=True)


@app.command("tick")
def tick(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a single sweep: due retries, elapsed timers, pending signals."""
    from flowspine.ops.scheduler import run_scheduler_tick

    ctx, container = make_context(database)
    with closing(container):
        result = run_scheduler_tick(ctx)
    output_result(result, as_json=json_out, title="Sweep")


@app.command("health")
def health(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show scheduler counters and lease state."""
    from flowspine.ops.scheduler import scheduler_health

    ctx, container = make_context(database)
    with closing(container):
        result = scheduler_health(ctx)
    output_result(result, as_json=json_out, title="Scheduler")


@app.command("run")
def run(
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between sweeps"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Sweep periodically until interrupted."""
    from flowspine.scheduling.runner import SchedulerRunner

    _, container = make_context(database)
    seconds = interval or container.settings.scheduler_interval_seconds
    runner = SchedulerRunner(container.scheduler, interval_seconds=seconds)
    console.print(f"[bold green]Scheduler running[/bold green] every {seconds:g}s (Ctrl+C to stop)")
    runner.start(run_immediately=True)
    try:
        runner.wait()
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping scheduler...[/dim]")
    finally:
        runner.stop()
        container.close()
