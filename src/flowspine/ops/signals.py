"""
Signal operations.

External event sources call :func:`emit_signal` to address a run that may
be waiting in ``awaiting_signal``. The signal is stored unprocessed and
picked up by the next scheduler sweep, or delivered on the spot with
``deliver=True``.
"""

from __future__ import annotations

from typing import Any

from flowspine.core.errors import FlowError, RunNotFoundError
from flowspine.core.logging import get_logger
from flowspine.engine.models import Signal, new_id
from flowspine.ops.context import OperationContext
from flowspine.ops.requests import EmitSignalRequest
from flowspine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def emit_signal(ctx: OperationContext, request: EmitSignalRequest) -> OperationResult[dict[str, Any]]:
    """Record a signal for ``run_id``; returns the signal and, if delivered now, the outcome."""
    timer = start_timer()
    if not request.run_id or not request.signal_type:
        return OperationResult.fail(
            "VALIDATION_FAILED", "run_id and signal_type are required", elapsed_ms=timer.elapsed_ms
        )

    container = ctx.container
    try:
        if container.stores.runs.get(request.run_id) is None:
            raise RunNotFoundError(f"Run '{request.run_id}' not found")
        signal = Signal(
            id=new_id(),
            run_id=request.run_id,
            signal_type=request.signal_type,
            signal_data=dict(request.signal_data),
            source=request.source,
            created_at=container.executor.clock(),
        )
        container.stores.signals.create(signal)
        logger.info(
            "signal_emitted",
            signal_id=signal.id,
            run_id=signal.run_id,
            signal_type=signal.signal_type,
            source=signal.source,
        )

        delivery = None
        if request.deliver:
            delivery = container.scheduler.deliver_signal(signal).value
            signal = container.stores.signals.get(signal.id) or signal
    except FlowError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", op="emit_signal", error=str(exc))
        return OperationResult.fail("INTERNAL", f"Failed to emit signal: {exc}", elapsed_ms=timer.elapsed_ms)

    return OperationResult.ok({"signal": signal.to_dict(), "delivery": delivery}, elapsed_ms=timer.elapsed_ms)
