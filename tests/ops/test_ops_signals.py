"""Tests for the emit_signal operation."""

from __future__ import annotations

from flowspine.ops.requests import EmitSignalRequest, StartRunRequest
from flowspine.ops.runs import start_run
from flowspine.ops.signals import emit_signal
from tests._support.workflows import signal_workflow


def waiting_run(ctx, save):
    save(signal_workflow())
    return start_run(ctx, StartRunRequest(workflow_id="wf-signal")).data["id"]


class TestEmitSignal:
    def test_stored_for_next_sweep(self, ctx, save):
        run_id = waiting_run(ctx, save)

        result = emit_signal(ctx, EmitSignalRequest(run_id=run_id, signal_type="approval", source="crm"))

        assert result.data["delivery"] is None
        assert result.data["signal"]["processed_at"] is None
        assert ctx.container.stores.runs.get(run_id).status.value == "awaiting_signal"

        ctx.container.scheduler.tick()
        assert ctx.container.stores.runs.get(run_id).status.value == "completed"

    def test_deliver_now(self, ctx, save):
        run_id = waiting_run(ctx, save)

        result = emit_signal(
            ctx,
            EmitSignalRequest(run_id=run_id, signal_type="approval", signal_data={"by": "ana"}, deliver=True),
        )

        assert result.data["delivery"] == "delivered"
        assert result.data["signal"]["processed_at"] is not None
        run = ctx.container.stores.runs.get(run_id)
        assert run.status.value == "completed"
        assert run.context["await"]["by"] == "ana"

    def test_wrong_type_is_ignored(self, ctx, save):
        run_id = waiting_run(ctx, save)
        result = emit_signal(ctx, EmitSignalRequest(run_id=run_id, signal_type="rejection", deliver=True))
        assert result.data["delivery"] == "ignored"

    def test_validation(self, ctx):
        assert emit_signal(ctx, EmitSignalRequest(signal_type="x")).error.code == "VALIDATION_FAILED"
        assert emit_signal(ctx, EmitSignalRequest(run_id="nope", signal_type="x")).error.code == "NOT_FOUND"
