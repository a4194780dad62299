"""
Runs router: inspect, resume, cancel, compensate, and signal runs.

Endpoints:
    GET  /runs                     List runs (filter by workflow/status)
    GET  /runs/{id}                Run detail with step logs and signals
    GET  /runs/{id}/logs           Step log entries
    POST /runs/{id}/resume         Resume a retrying/awaiting run now
    POST /runs/{id}/cancel         Cancel a non-terminal run
    POST /runs/{id}/compensate     Undo completed steps of a finished run
    POST /runs/{id}/signals        Emit a signal to the run
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query

from flowspine.api.deps import OpContext
from flowspine.api.schemas import (
    CancelRunBody,
    EmitSignalBody,
    PagedResponse,
    ResumeRunBody,
    SuccessResponse,
)
from flowspine.api.utils import respond, respond_paged

router = APIRouter(prefix="/runs")


@router.get("", response_model=PagedResponse[dict[str, Any]])
def list_runs(
    ctx: OpContext,
    workflow_id: str | None = Query(None, description="Filter by workflow ID"),
    status: str | None = Query(None, description="Filter by run status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    from flowspine.ops.requests import ListRunsRequest
    from flowspine.ops.runs import list_runs as _list

    request = ListRunsRequest(workflow_id=workflow_id, status=status, limit=limit, offset=offset)
    return respond_paged(_list(ctx, request))


@router.get("/{run_id}", response_model=SuccessResponse[dict[str, Any]])
def get_run(ctx: OpContext, run_id: str = Path(..., description="Run ID")):
    from flowspine.ops.runs import get_run as _get

    return respond(_get(ctx, run_id))


@router.get("/{run_id}/logs", response_model=SuccessResponse[list[dict[str, Any]]])
def list_step_logs(ctx: OpContext, run_id: str = Path(..., description="Run ID")):
    from flowspine.ops.runs import list_step_logs as _logs

    return respond(_logs(ctx, run_id))


@router.post("/{run_id}/resume", response_model=SuccessResponse[dict[str, Any]])
def resume_run(ctx: OpContext, run_id: str = Path(..., description="Run ID"), body: ResumeRunBody | None = None):
    """Resume now. Returns 409 unless the run is retrying or awaiting a timer/signal."""
    from flowspine.ops.requests import ResumeRunRequest
    from flowspine.ops.runs import resume_run as _resume

    signal_data = body.signal_data if body else None
    return respond(_resume(ctx, ResumeRunRequest(run_id=run_id, signal_data=signal_data)))


@router.post("/{run_id}/cancel", response_model=SuccessResponse[dict[str, Any]])
def cancel_run(ctx: OpContext, run_id: str = Path(..., description="Run ID"), body: CancelRunBody | None = None):
    from flowspine.ops.requests import CancelRunRequest
    from flowspine.ops.runs import cancel_run as _cancel

    reason = body.reason if body else None
    return respond(_cancel(ctx, CancelRunRequest(run_id=run_id, reason=reason)))


@router.post("/{run_id}/compensate", response_model=SuccessResponse[dict[str, Any]])
def compensate_run(ctx: OpContext, run_id: str = Path(..., description="Run ID")):
    from flowspine.ops.runs import compensate_run as _compensate

    return respond(_compensate(ctx, run_id))


@router.post("/{run_id}/signals", status_code=202, response_model=SuccessResponse[dict[str, Any]])
def emit_signal(ctx: OpContext, body: EmitSignalBody, run_id: str = Path(..., description="Run ID")):
    """Record a signal; the next sweep delivers it unless ``deliver`` is set."""
    from flowspine.ops.requests import EmitSignalRequest
    from flowspine.ops.signals import emit_signal as _emit

    request = EmitSignalRequest(
        run_id=run_id,
        signal_type=body.signal_type,
        signal_data=body.signal_data,
        source=body.source,
        deliver=body.deliver,
    )
    return respond(_emit(ctx, request))
