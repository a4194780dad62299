"""
Dead-letter operations.

List, requeue, and resolve dead-letter entries. Entries are never deleted;
requeue and dismiss both record a resolution on the entry.
"""

from __future__ import annotations

from typing import Any

from flowspine.core.errors import DeadLetterNotFoundError, FlowError
from flowspine.core.logging import get_logger
from flowspine.ops.context import OperationContext
from flowspine.ops.requests import ListDeadLettersRequest, ResolveDeadLetterRequest
from flowspine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)

RESOLUTION_ACTIONS = ("dismissed", "requeued")


def list_dead_letters(ctx: OperationContext, request: ListDeadLettersRequest) -> PagedResult[dict[str, Any]]:
    timer = start_timer()
    try:
        store = ctx.container.stores.dead_letters
        entries = store.list(
            include_resolved=request.include_resolved,
            workflow_id=request.workflow_id,
            limit=request.limit,
            offset=request.offset,
        )
        total = store.count(include_resolved=request.include_resolved, workflow_id=request.workflow_id)
        return PagedResult.from_items(
            [e.to_dict() for e in entries],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", op="list_dead_letters", error=str(exc))
        return PagedResult.fail("INTERNAL", f"Failed to list dead letters: {exc}", elapsed_ms=timer.elapsed_ms)


def get_dead_letter(ctx: OperationContext, entry_id: str) -> OperationResult[dict[str, Any]]:
    timer = start_timer()
    entry = ctx.container.stores.dead_letters.get(entry_id)
    if entry is None:
        return OperationResult.fail("NOT_FOUND", f"Dead letter '{entry_id}' not found", elapsed_ms=timer.elapsed_ms)
    return OperationResult.ok(entry.to_dict(), elapsed_ms=timer.elapsed_ms)


def requeue_dead_letter(ctx: OperationContext, entry_id: str) -> OperationResult[dict[str, Any]]:
    """Start a fresh run seeded with the entry's trigger data and context snapshot."""
    timer = start_timer()
    container = ctx.container
    try:
        entry = container.stores.dead_letters.get(entry_id)
        if entry is None:
            raise DeadLetterNotFoundError(f"Dead letter '{entry_id}' not found")
        if entry.is_resolved:
            return OperationResult.fail(
                "CONFLICT",
                f"Dead letter '{entry_id}' is already {entry.resolution_action}",
                elapsed_ms=timer.elapsed_ms,
            )
        if ctx.dry_run:
            return OperationResult.ok(entry.to_dict(), elapsed_ms=timer.elapsed_ms, metadata={"dry_run": True})

        run = container.executor.start_run(
            entry.workflow_id, entry.trigger_data, context=entry.context_snapshot
        )
        resolved = container.stores.dead_letters.resolve(
            entry_id, action="requeued", at=container.executor.clock(), requeued_run_id=run.id
        )
        if not resolved:
            logger.warning("dead_letter_requeue_raced", entry_id=entry_id, run_id=run.id)
        logger.info("dead_letter_requeued", entry_id=entry_id, run_id=run.id, status=run.status.value)
        updated = container.stores.dead_letters.get(entry_id)
        return OperationResult.ok(
            {"dead_letter": updated.to_dict() if updated else None, "run": run.to_dict()},
            elapsed_ms=timer.elapsed_ms,
        )
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="requeue_dead_letter", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to requeue: {exc}", elapsed_ms=timer.elapsed_ms)


def resolve_dead_letter(ctx: OperationContext, request: ResolveDeadLetterRequest) -> OperationResult[dict[str, Any]]:
    """Mark an entry resolved without re-running it."""
    timer = start_timer()
    if request.action not in RESOLUTION_ACTIONS:
        return OperationResult.fail(
            "VALIDATION_FAILED",
            f"action must be one of {', '.join(RESOLUTION_ACTIONS)}",
            elapsed_ms=timer.elapsed_ms,
        )
    container = ctx.container
    try:
        store = container.stores.dead_letters
        entry = store.get(request.entry_id)
        if entry is None:
            raise DeadLetterNotFoundError(f"Dead letter '{request.entry_id}' not found")
        if not store.resolve(request.entry_id, action=request.action, at=container.executor.clock()):
            return OperationResult.fail(
                "CONFLICT", f"Dead letter '{request.entry_id}' is already resolved", elapsed_ms=timer.elapsed_ms
            )
        logger.info("dead_letter_resolved", entry_id=request.entry_id, action=request.action)
        return OperationResult.ok(store.get(request.entry_id).to_dict(), elapsed_ms=timer.elapsed_ms)
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="resolve_dead_letter", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to resolve: {exc}", elapsed_ms=timer.elapsed_ms)
