"""
Operations layer for flowspine.

Typed request/response functions over the engine, stores, and scheduler,
shared by the CLI and the HTTP API:

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` and never raise
- No transport knowledge (no HTTP, no CLI)

Usage::

    from flowspine.container import build_container
    from flowspine.ops import OperationContext
    from flowspine.ops.runs import start_run
    from flowspine.ops.requests import StartRunRequest

    ctx = OperationContext(container=build_container(memory=True))
    result = start_run(ctx, StartRunRequest(workflow_id="wf-1"))
    assert result.success
"""

from flowspine.ops.context import OperationContext
from flowspine.ops.result import OperationError, OperationResult, PagedResult

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PagedResult",
]
