"""
Scheduler router.

Endpoints:
    POST /scheduler/tick     Run one sweep and return its report
    GET  /scheduler/health   Counters and lease state
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from flowspine.api.deps import OpContext
from flowspine.api.schemas import SuccessResponse
from flowspine.api.utils import respond

router = APIRouter(prefix="/scheduler")


@router.post("/tick", response_model=SuccessResponse[dict[str, Any]])
def tick(ctx: OpContext):
    from flowspine.ops.scheduler import run_scheduler_tick

    return respond(run_scheduler_tick(ctx))


@router.get("/health", response_model=SuccessResponse[dict[str, Any]])
def health(ctx: OpContext):
    from flowspine.ops.scheduler import scheduler_health

    return respond(scheduler_health(ctx))
