"""
Run operations.

Trigger, resume, cancel, compensate, and inspect workflow runs. These wrap
:class:`~flowspine.engine.executor.WorkflowExecutor` with typed
request/response contracts; engine errors become ``OperationResult``
failures (``NOT_FOUND``, ``CONFLICT``, ``VALIDATION_FAILED``).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from flowspine.core.errors import FlowError, RunNotFoundError
from flowspine.core.logging import get_logger
from flowspine.engine.models import RunStatus, WorkflowRun
from flowspine.ops.context import OperationContext
from flowspine.ops.requests import (
    CancelRunRequest,
    ListRunsRequest,
    ResumeRunRequest,
    StartRunRequest,
)
from flowspine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


def _run_op(
    ctx: OperationContext, name: str, fn: Callable[[], WorkflowRun]
) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    try:
        with ctx.logging():
            run = fn()
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op=name, error=str(exc))
        return OperationResult.fail("INTERNAL", f"{name} failed: {exc}", elapsed_ms=timer.elapsed_ms)
    return OperationResult.ok(run.to_dict(), elapsed_ms=timer.elapsed_ms)


def start_run(ctx: OperationContext, request: StartRunRequest) -> OperationResult[dict[str, Any]]:
    """Create a run and execute it synchronously up to its first suspension or end."""
    if not request.workflow_id:
        return OperationResult.fail("VALIDATION_FAILED", "workflow_id is required")
    executor = ctx.container.executor
    return _run_op(ctx, "start_run", lambda: executor.start_run(request.workflow_id, dict(request.trigger_data)))


def resume_run(ctx: OperationContext, request: ResumeRunRequest) -> OperationResult[dict[str, Any]]:
    """Resume a retrying, awaiting_timer, or awaiting_signal run now."""
    if not request.run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required")
    executor = ctx.container.executor
    return _run_op(ctx, "resume_run", lambda: executor.resume(request.run_id, request.signal_data))


def cancel_run(ctx: OperationContext, request: CancelRunRequest) -> OperationResult[dict[str, Any]]:
    if not request.run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required")
    if ctx.dry_run:
        return get_run(ctx, request.run_id)
    executor = ctx.container.executor
    return _run_op(ctx, "cancel_run", lambda: executor.cancel(request.run_id, request.reason))


def compensate_run(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    if not run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required")
    executor = ctx.container.executor
    return _run_op(ctx, "compensate_run", lambda: executor.compensate(run_id))


def get_run(ctx: OperationContext, run_id: str) -> OperationResult[dict[str, Any]]:
    """Return a run with its step logs, signals, and dead-letter entry (if any)."""
    timer = start_timer()
    if not run_id:
        return OperationResult.fail("VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms)
    try:
        stores = ctx.container.stores
        run = stores.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Run '{run_id}' not found")
        dead_letter = stores.dead_letters.get_for_run(run_id)
        detail = run.to_dict()
        detail["step_logs"] = [e.to_dict() for e in stores.step_logs.list_for_run(run_id)]
        detail["signals"] = [s.to_dict() for s in stores.signals.list_for_run(run_id)]
        detail["dead_letter"] = dead_letter.to_dict() if dead_letter else None
        return OperationResult.ok(detail, elapsed_ms=timer.elapsed_ms)
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="get_run", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to get run: {exc}", elapsed_ms=timer.elapsed_ms)


def list_step_logs(ctx: OperationContext, run_id: str) -> OperationResult[list[dict[str, Any]]]:
    timer = start_timer()
    try:
        stores = ctx.container.stores
        if stores.runs.get(run_id) is None:
            raise RunNotFoundError(f"Run '{run_id}' not found")
        logs = [e.to_dict() for e in stores.step_logs.list_for_run(run_id)]
        return OperationResult.ok(logs, elapsed_ms=timer.elapsed_ms)
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="list_step_logs", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to list step logs: {exc}", elapsed_ms=timer.elapsed_ms)


def list_runs(ctx: OperationContext, request: ListRunsRequest) -> PagedResult[dict[str, Any]]:
    """List runs, newest first, optionally filtered by workflow and status."""
    timer = start_timer()
    try:
        status = RunStatus(request.status) if request.status else None
    except ValueError:
        valid = ", ".join(s.value for s in RunStatus)
        return PagedResult.fail(
            "VALIDATION_FAILED",
            f"Unknown status '{request.status}'; expected one of: {valid}",
            elapsed_ms=timer.elapsed_ms,
        )
    try:
        store = ctx.container.stores.runs
        runs = store.list(
            workflow_id=request.workflow_id, status=status, limit=request.limit, offset=request.offset
        )
        total = store.count(workflow_id=request.workflow_id, status=status)
        return PagedResult.from_items(
            [r.to_dict() for r in runs],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", op="list_runs", error=str(exc))
        return PagedResult.fail("INTERNAL", f"Failed to list runs: {exc}", elapsed_ms=timer.elapsed_ms)
