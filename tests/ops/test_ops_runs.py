"""Tests for run operations."""

from __future__ import annotations

from flowspine.ops.requests import CancelRunRequest, ListRunsRequest, ResumeRunRequest, StartRunRequest
from flowspine.ops.runs import (
    cancel_run,
    compensate_run,
    get_run,
    list_runs,
    list_step_logs,
    resume_run,
    start_run,
)
from tests._support.workflows import linear_workflow, signal_workflow


class TestStartRun:
    def test_starts(self, ctx, save):
        save(linear_workflow(("email", "send_email")))
        result = start_run(ctx, StartRunRequest(workflow_id="wf-linear", trigger_data={"to": "a@b.c"}))
        assert result.success
        assert result.data["status"] == "completed"
        assert result.data["trigger_data"] == {"to": "a@b.c"}

    def test_requires_workflow_id(self, ctx):
        assert start_run(ctx, StartRunRequest()).error.code == "VALIDATION_FAILED"

    def test_unknown_workflow(self, ctx):
        assert start_run(ctx, StartRunRequest(workflow_id="nope")).error.code == "NOT_FOUND"

    def test_disabled_is_conflict(self, ctx, save):
        save(linear_workflow(("email", "send_email"), enabled=False))
        assert start_run(ctx, StartRunRequest(workflow_id="wf-linear")).error.code == "CONFLICT"


class TestLifecycle:
    def _waiting(self, ctx, save):
        save(signal_workflow())
        return start_run(ctx, StartRunRequest(workflow_id="wf-signal")).data["id"]

    def test_resume_with_signal_data(self, ctx, save):
        run_id = self._waiting(ctx, save)
        result = resume_run(ctx, ResumeRunRequest(run_id=run_id, signal_data={"ok": True}))
        assert result.data["status"] == "completed"
        assert result.data["context"]["await"]["ok"] is True

    def test_resume_finished_run_is_conflict(self, ctx, save):
        run_id = self._waiting(ctx, save)
        cancel_run(ctx, CancelRunRequest(run_id=run_id))
        result = resume_run(ctx, ResumeRunRequest(run_id=run_id))
        assert result.error.code == "CONFLICT"

    def test_resume_unknown(self, ctx):
        assert resume_run(ctx, ResumeRunRequest(run_id="nope")).error.code == "NOT_FOUND"

    def test_cancel(self, ctx, save):
        run_id = self._waiting(ctx, save)
        result = cancel_run(ctx, CancelRunRequest(run_id=run_id, reason="customer withdrew"))
        assert result.data["status"] == "cancelled"
        assert result.data["error_message"] == "customer withdrew"

    def test_cancel_dry_run_previews(self, ctx, dry_ctx, save):
        run_id = self._waiting(ctx, save)
        result = cancel_run(dry_ctx, CancelRunRequest(run_id=run_id))
        assert result.data["status"] == "awaiting_signal"
        assert ctx.container.stores.runs.get(run_id).status.value == "awaiting_signal"

    def test_compensate_without_records_is_conflict(self, ctx, save):
        save(linear_workflow(("email", "send_email")))
        run_id = start_run(ctx, StartRunRequest(workflow_id="wf-linear")).data["id"]
        assert compensate_run(ctx, run_id).error.code == "CONFLICT"


class TestInspection:
    def test_get_run_includes_history(self, ctx, save, steps):
        save(linear_workflow(("email", "send_email")))
        steps.script("send_email", *[RuntimeError("down")] * 3)
        run_id = start_run(ctx, StartRunRequest(workflow_id="wf-linear")).data["id"]

        detail = get_run(ctx, run_id).data

        assert detail["status"] == "retrying"
        assert [log["node_id"] for log in detail["step_logs"]] == ["trigger", "email"]
        assert detail["signals"] == []
        assert detail["dead_letter"] is None

    def test_get_run_missing(self, ctx):
        assert get_run(ctx, "nope").error.code == "NOT_FOUND"

    def test_step_logs(self, ctx, save):
        save(linear_workflow(("email", "send_email")))
        run_id = start_run(ctx, StartRunRequest(workflow_id="wf-linear")).data["id"]
        logs = list_step_logs(ctx, run_id).data
        assert [log["status"] for log in logs] == ["completed", "completed"]
        assert list_step_logs(ctx, "nope").error.code == "NOT_FOUND"

    def test_list_runs_filters(self, ctx, save):
        save(linear_workflow(("email", "send_email")))
        save(signal_workflow())
        start_run(ctx, StartRunRequest(workflow_id="wf-linear"))
        start_run(ctx, StartRunRequest(workflow_id="wf-signal"))

        waiting = list_runs(ctx, ListRunsRequest(status="awaiting_signal"))
        by_workflow = list_runs(ctx, ListRunsRequest(workflow_id="wf-linear"))

        assert waiting.total == 1
        assert waiting.data[0]["workflow_id"] == "wf-signal"
        assert by_workflow.total == 1

    def test_list_runs_bad_status(self, ctx):
        result = list_runs(ctx, ListRunsRequest(status="sleeping"))
        assert result.error.code == "VALIDATION_FAILED"
        assert "awaiting_timer" in result.error.message
