"""
Top-level ``flowspine`` command; subcommand groups attach at import time.
"""

from __future__ import annotations

import typer

from flowspine import __version__

app = typer.Typer(
    name="flowspine",
    help="flowspine: durable workflow orchestration.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _show_version(value: bool) -> None:
    if not value:
        return
    typer.echo(f"flowspine {__version__}")
    raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V", help="Print the version and exit.", callback=_show_version, is_eager=True
    ),
) -> None:
    """flowspine CLI. Manage workflows, runs, signals, and the scheduler."""


from flowspine.cli import dlq, runs, scheduler, serve, signals, workflows  # noqa: E402

for _name, _group, _help in (
    ("workflows", workflows.app, "Register, inspect and dry-run workflow definitions."),
    ("runs", runs.app, "Start, inspect, resume and cancel runs."),
    ("signals", signals.app, "Send signals to runs awaiting one."),
    ("dlq", dlq.app, "Inspect and resolve dead-lettered runs."),
    ("scheduler", scheduler.app, "Run scheduler sweeps and check lock health."),
    ("serve", serve.app, "Serve the HTTP API."),
):
    app.add_typer(_group, name=_name, help=_help)
