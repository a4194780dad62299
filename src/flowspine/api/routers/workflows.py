"""
Workflow router: register, inspect, dry-run, and trigger workflows.

Endpoints:
    POST /workflows                 Register a definition
    GET  /workflows                 List definitions
    GET  /workflows/{id}            Get one definition
    POST /workflows/{id}/dry-run    Validate against the step registry
    POST /workflows/{id}/runs       Start a run
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query

from flowspine.api.deps import OpContext
from flowspine.api.schemas import PagedResponse, StartRunBody, SuccessResponse, WorkflowCreateRequest
from flowspine.api.utils import respond, respond_paged

router = APIRouter(prefix="/workflows")


@router.post("", status_code=201, response_model=SuccessResponse[dict[str, Any]])
def register_workflow(ctx: OpContext, body: WorkflowCreateRequest):
    """Validate DAG invariants and store a new workflow definition.

    Returns 400 when the graph is invalid (dangling edge, cycle, missing
    trigger) and 409 when the id is already registered.
    """
    from flowspine.ops.requests import RegisterWorkflowRequest
    from flowspine.ops.workflows import register_workflow as _register

    definition = body.model_dump(exclude_none=True)
    return respond(_register(ctx, RegisterWorkflowRequest(definition=definition)))


@router.get("", response_model=PagedResponse[dict[str, Any]])
def list_workflows(
    ctx: OpContext,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    from flowspine.ops.workflows import list_workflows as _list

    return respond_paged(_list(ctx, limit=limit, offset=offset))


@router.get("/{workflow_id}", response_model=SuccessResponse[dict[str, Any]])
def get_workflow(ctx: OpContext, workflow_id: str = Path(..., description="Workflow ID")):
    from flowspine.ops.workflows import get_workflow as _get

    return respond(_get(ctx, workflow_id))


@router.post("/{workflow_id}/dry-run", response_model=SuccessResponse[dict[str, Any]])
def dry_run_workflow(ctx: OpContext, workflow_id: str = Path(..., description="Workflow ID")):
    """Preview nodes in traversal order; problems are listed under ``errors``."""
    from flowspine.ops.workflows import dry_run_workflow as _dry_run

    return respond(_dry_run(ctx, workflow_id))


@router.post("/{workflow_id}/runs", status_code=201, response_model=SuccessResponse[dict[str, Any]])
def start_run(ctx: OpContext, workflow_id: str = Path(..., description="Workflow ID"), body: StartRunBody | None = None):
    """Start a run; it executes synchronously until it suspends or finishes."""
    from flowspine.ops.requests import StartRunRequest
    from flowspine.ops.runs import start_run as _start

    trigger_data = body.trigger_data if body else {}
    return respond(_start(ctx, StartRunRequest(workflow_id=workflow_id, trigger_data=trigger_data)))
