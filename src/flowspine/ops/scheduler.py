"""
Scheduler operations: run one sweep on demand and report scheduler health.
"""

from __future__ import annotations

from typing import Any

from flowspine.core.logging import get_logger
from flowspine.ops.context import OperationContext
from flowspine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def run_scheduler_tick(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    """Run a single sweep. Per-item failures are reported as warnings, not a failed result."""
    timer = start_timer()
    try:
        report = ctx.container.scheduler.tick()
    except Exception as exc:
        logger.exception("op_failed", op="run_scheduler_tick", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Sweep failed: {exc}", elapsed_ms=timer.elapsed_ms)

    warnings = [f"{e.sweep}: {e.error}" for e in report.errors]
    if report.skipped_locked:
        warnings.append("Another sweep holds the scheduler lease; nothing was processed")
    return OperationResult.ok(report.to_dict(), warnings=warnings, elapsed_ms=timer.elapsed_ms)


def scheduler_health(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    return OperationResult.ok(ctx.container.scheduler.health())
