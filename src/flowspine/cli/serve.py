"""
``flowspine serve`` CLI: start the API server.
"""

from __future__ import annotations

import typer

from flowspine.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the flowspine REST API server."""
    import uvicorn

    from flowspine.core.settings import FlowSettings

    settings = FlowSettings()
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting flowspine API[/bold green] on {host}:{port}")
    uvicorn.run(
        "flowspine.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )
