"""
Shared plumbing for CLI commands.

Each command builds an engine with :func:`make_context`, calls one
``flowspine.ops`` function and hands the result to :func:`output_result` or
:func:`output_paged`. Failed results print ``Error (CODE): message`` on
stderr and exit 1. ``--json`` output goes to stdout; log lines go to stderr.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import asdict, is_dataclass
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from flowspine.container import Container, build_container
from flowspine.core.logging import configure_logging
from flowspine.core.settings import FlowSettings
from flowspine.ops.context import OperationContext
from flowspine.ops.result import OperationResult, PagedResult

console = Console()
err_console = Console(stderr=True)

# Table columns per listing; --json prints every field.
_LIST_COLUMNS: dict[str, tuple[str, ...]] = {
    "Workflows": ("id", "name", "enabled", "run_count", "success_count", "failure_count"),
    "Runs": ("id", "workflow_id", "status", "current_node_id", "retry_count", "started_at"),
    "Step Logs": ("node_id", "node_type", "status", "attempt", "duration_ms", "error_message"),
    "Dead Letters": ("id", "run_id", "workflow_id", "failure_reason", "resolution_action"),
}


def make_context(
    database: str | None = None, *, dry_run: bool = False
) -> tuple[OperationContext, Container]:
    """Load settings (``--db`` wins over ``FLOWSPINE_DATABASE_PATH``) and wire an engine."""
    settings = FlowSettings(database_path=database) if database else FlowSettings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    container = build_container(settings)
    return OperationContext(container=container, caller="cli", dry_run=dry_run), container


def parse_json_option(raw: str | None, *, option: str) -> dict[str, Any]:
    """Decode a JSON-object option such as ``--data``; empty means ``{}``."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        err_console.print(f"[red]Error: invalid JSON for {option}: {e}[/red]")
        raise typer.Exit(1) from e
    if not isinstance(value, dict):
        err_console.print(f"[red]Error: {option} must be a JSON object[/red]")
        raise typer.Exit(1)
    return value


def _plain(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return dict(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return obj


def _exit_failed(result: OperationResult) -> NoReturn:
    error = result.error
    code, message = (error.code, error.message) if error else ("ERROR", "Unknown error")
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


def _print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_result(result: OperationResult, *, as_json: bool = False, title: str = "") -> None:
    """Print a single record, or a list as a table; exit 1 on failure."""
    if not result.success:
        _exit_failed(result)

    data = result.data
    if as_json:
        _print_json([_plain(d) for d in data] if isinstance(data, list | tuple) else _plain(data))
        return

    if isinstance(data, list):
        _print_rows(data, title)
    else:
        _print_record(_plain(data), title)
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


def output_paged(result: PagedResult, *, as_json: bool = False, title: str = "") -> None:
    """Print one page of a listing with a ``Showing N of M`` footer."""
    if not result.success:
        _exit_failed(result)

    items = list(result.data or [])
    if as_json:
        _print_json(
            {
                "items": [_plain(i) for i in items],
                "total": result.total,
                "limit": result.limit,
                "offset": result.offset,
                "has_more": result.has_more,
            }
        )
        return

    if _print_rows(items, title):
        console.print(f"\n[dim]Showing {len(items)} of {result.total} (offset {result.offset})[/dim]")


def _print_rows(items: Iterable[Any], title: str) -> bool:
    rows = [_plain(i) for i in items]
    if not rows:
        console.print("[dim]No items.[/dim]")
        return False
    columns = _LIST_COLUMNS.get(title, tuple(rows[0]))
    table = Table(title=title or None, pad_edge=False)
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(c)) for c in columns))
    console.print(table)
    return True


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def _print_record(record: Any, title: str) -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    if not isinstance(record, dict):
        console.print(str(record))
        return
    for key, value in record.items():
        shown = json.dumps(value, default=str) if isinstance(value, dict | list) else value
        console.print(f"  [cyan]{key}[/cyan]: {shown}")
