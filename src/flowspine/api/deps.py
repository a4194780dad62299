"""
FastAPI dependency injection: cached settings and per-request contexts.

Usage in routers::

    from flowspine.api.deps import OpContext

    @router.get("/runs")
    def list_runs(ctx: OpContext):
        ...
"""

from __future__ import annotations

import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from flowspine.container import Container
from flowspine.core.settings import FlowSettings
from flowspine.ops.context import OperationContext

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> FlowSettings:
    """Cached settings, loaded once per process."""
    return FlowSettings()


# ── Container (per-app) ──────────────────────────────────────────────────


def get_container(request: Request) -> Container:
    return request.app.state.container


# ── Operation context (per-request) ──────────────────────────────────────


def get_operation_context(
    request: Request,
    container: Annotated[Container, Depends(get_container)],
) -> OperationContext:
    """Build an :class:`OperationContext` from the current request."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    return OperationContext(container=container, request_id=request_id, caller="api")


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[FlowSettings, Depends(get_settings)]
OpContext = Annotated[OperationContext, Depends(get_operation_context)]
