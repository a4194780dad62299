"""
Dead-letter router: inspect, requeue, and resolve failed runs.

Endpoints:
    GET  /dlq                   List entries (unresolved unless include_resolved)
    GET  /dlq/{id}              Get one entry
    POST /dlq/{id}/requeue      Start a fresh run from the captured context
    POST /dlq/{id}/resolve      Mark resolved without re-running
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query

from flowspine.api.deps import OpContext
from flowspine.api.schemas import PagedResponse, ResolveDeadLetterBody, SuccessResponse
from flowspine.api.utils import respond, respond_paged

router = APIRouter(prefix="/dlq")


@router.get("", response_model=PagedResponse[dict[str, Any]])
def list_dead_letters(
    ctx: OpContext,
    workflow_id: str | None = Query(None, description="Filter by workflow ID"),
    include_resolved: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    from flowspine.ops.dlq import list_dead_letters as _list
    from flowspine.ops.requests import ListDeadLettersRequest

    request = ListDeadLettersRequest(
        include_resolved=include_resolved, workflow_id=workflow_id, limit=limit, offset=offset
    )
    return respond_paged(_list(ctx, request))


@router.get("/{entry_id}", response_model=SuccessResponse[dict[str, Any]])
def get_dead_letter(ctx: OpContext, entry_id: str = Path(..., description="Dead-letter entry ID")):
    from flowspine.ops.dlq import get_dead_letter as _get

    return respond(_get(ctx, entry_id))


@router.post("/{entry_id}/requeue", response_model=SuccessResponse[dict[str, Any]])
def requeue_dead_letter(ctx: OpContext, entry_id: str = Path(..., description="Dead-letter entry ID")):
    """Returns ``{dead_letter, run}``; 409 if the entry is already resolved."""
    from flowspine.ops.dlq import requeue_dead_letter as _requeue

    return respond(_requeue(ctx, entry_id))


@router.post("/{entry_id}/resolve", response_model=SuccessResponse[dict[str, Any]])
def resolve_dead_letter(
    ctx: OpContext,
    entry_id: str = Path(..., description="Dead-letter entry ID"),
    body: ResolveDeadLetterBody | None = None,
):
    from flowspine.ops.dlq import resolve_dead_letter as _resolve
    from flowspine.ops.requests import ResolveDeadLetterRequest

    action = body.action if body else "dismissed"
    return respond(_resolve(ctx, ResolveDeadLetterRequest(entry_id=entry_id, action=action)))
