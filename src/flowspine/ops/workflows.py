"""
Workflow definition operations.

Register (validate + store), inspect, list, and dry-run workflow
definitions. Definitions are immutable once registered: registering an
existing id is a conflict.
"""

from __future__ import annotations

from typing import Any

from flowspine.core.errors import DefinitionError, FlowError, WorkflowNotFoundError
from flowspine.core.logging import get_logger
from flowspine.engine.models import WorkflowDefinition
from flowspine.ops.context import OperationContext
from flowspine.ops.requests import RegisterWorkflowRequest
from flowspine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


def register_workflow(
    ctx: OperationContext,
    request: RegisterWorkflowRequest,
) -> OperationResult[dict[str, Any]]:
    """Validate graph shape and built-in node configs, then store a new definition."""
    timer = start_timer()

    try:
        definition = WorkflowDefinition.from_dict(request.definition)
    except (KeyError, TypeError, ValueError) as exc:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"Malformed workflow definition: {exc}",
            elapsed_ms=timer.elapsed_ms,
        )

    try:
        definition.validate()
        problems = ctx.container.executor.config_errors(definition)
        if problems:
            raise DefinitionError("; ".join(problems))
        stores = ctx.container.stores
        if stores.definitions.get(definition.id) is not None:
            return OperationResult.fail(
                "CONFLICT",
                f"Workflow '{definition.id}' already exists",
                elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            return OperationResult.ok(
                definition.to_dict(), elapsed_ms=timer.elapsed_ms, metadata={"dry_run": True}
            )
        stores.definitions.save(definition)
    except DefinitionError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="register_workflow", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to register workflow: {exc}", elapsed_ms=timer.elapsed_ms)

    with ctx.logging():
        logger.info("workflow_registered", workflow_id=definition.id, workflow=definition.name)
    return OperationResult.ok(definition.to_dict(), elapsed_ms=timer.elapsed_ms)


def get_workflow(ctx: OperationContext, workflow_id: str) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    if not workflow_id:
        return OperationResult.fail("VALIDATION_FAILED", "workflow_id is required", elapsed_ms=timer.elapsed_ms)
    try:
        definition = ctx.container.stores.definitions.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return OperationResult.ok(definition.to_dict(), elapsed_ms=timer.elapsed_ms)
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="get_workflow", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to get workflow: {exc}", elapsed_ms=timer.elapsed_ms)


def list_workflows(
    ctx: OperationContext,
    *,
    limit: int = 50,
    offset: int = 0,
) -> PagedResult[dict[str, Any]]:
    timer = start_timer()
    try:
        store = ctx.container.stores.definitions
        items = [d.to_dict() for d in store.list(limit=limit, offset=offset)]
        return PagedResult.from_items(
            items, total=store.count(), limit=limit, offset=offset, elapsed_ms=timer.elapsed_ms
        )
    except Exception as exc:
        logger.exception("op_failed", op="list_workflows", error=str(exc))
        return PagedResult.fail("INTERNAL", f"Failed to list workflows: {exc}", elapsed_ms=timer.elapsed_ms)


def dry_run_workflow(ctx: OperationContext, workflow_id: str) -> OperationResult[dict[str, Any]]:
    """Validate a stored definition and preview its nodes; no run is created."""
    timer = start_timer()
    try:
        preview = ctx.container.executor.dry_run(workflow_id)
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="dry_run_workflow", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Dry run failed: {exc}", elapsed_ms=timer.elapsed_ms)
    return OperationResult.ok(preview, warnings=list(preview["errors"]), elapsed_ms=timer.elapsed_ms)
