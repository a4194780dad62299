"""Tests for WorkflowExecutor: advancing, suspending, retrying, and dead-lettering runs."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from flowspine.container import build_container
from flowspine.core.errors import (
    DefinitionError,
    ResumeRejectedError,
    RunNotFoundError,
    WorkflowNotFoundError,
)
from flowspine.engine.executor import DEFAULT_DELAY_SECONDS, DEFAULT_SIGNAL_TYPE, delay_seconds
from flowspine.engine.models import (
    CompensationStatus,
    Edge,
    Node,
    RunStatus,
    StepLogEntry,
    StepStatus,
    WorkflowDefinition,
    WorkflowRun,
    new_id,
)
from flowspine.engine.retry import RetryPolicy
from tests._support.workflows import (
    approval_workflow,
    linear_workflow,
    make_settings,
    signal_workflow,
)


def node_ids(container, run_id):
    return [e.node_id for e in container.stores.step_logs.list_for_run(run_id)]


def compensating_workflow() -> WorkflowDefinition:
    """trigger -> charge(webhook, undo refund) -> email(send_email, undo notify) -> close(update_status)."""
    nodes = [
        Node(id="trigger", type="trigger"),
        Node(id="charge", type="webhook", name="Charge card", config={"amount": 40}, compensation="refund"),
        Node(id="email", type="send_email", name="Receipt", compensation="notify"),
        Node(id="close", type="update_status", name="Close order"),
    ]
    edges = [
        Edge(id="e1", source_node_id="trigger", target_node_id="charge"),
        Edge(id="e2", source_node_id="charge", target_node_id="email"),
        Edge(id="e3", source_node_id="email", target_node_id="close"),
    ]
    return WorkflowDefinition.create("Checkout", nodes, edges, workflow_id="wf-checkout")


# ── Delay parsing ────────────────────────────────────────────────────────


class TestDelaySeconds:
    def test_units_are_summed(self):
        assert delay_seconds({"minutes": 5, "seconds": 30}) == 330

    def test_default_when_no_units(self):
        assert delay_seconds({}) == DEFAULT_DELAY_SECONDS

    def test_negative_rejected(self):
        with pytest.raises(DefinitionError):
            delay_seconds({"seconds": -1})

    def test_non_numeric_rejected(self):
        with pytest.raises(DefinitionError, match="hours"):
            delay_seconds({"hours": "soon"})


# ── Happy path ───────────────────────────────────────────────────────────


class TestApprovalFlow:
    def test_suspends_on_delay(self, container, save, clock):
        save(approval_workflow())
        run = container.executor.start_run("wf-approval", {"amount": 250})

        assert run.status == RunStatus.AWAITING_TIMER
        assert run.current_node_id == "wait"
        assert run.next_retry_at == clock.now + timedelta(minutes=5)
        assert node_ids(container, run.id) == ["trigger", "wait"]
        assert run.context["wait"] == {"delayed": True}

    def test_zero_delay_still_wakes_in_the_future(self, container, save, clock, steps):
        nodes = [
            Node(id="trigger", type="trigger"),
            Node(id="pause", type="delay", config={"seconds": 0}),
            Node(id="hook", type="webhook"),
        ]
        edges = [
            Edge(id="e1", source_node_id="trigger", target_node_id="pause"),
            Edge(id="e2", source_node_id="pause", target_node_id="hook"),
        ]
        save(WorkflowDefinition.create("Instant", nodes, edges, workflow_id="wf-instant"))

        run = container.executor.start_run("wf-instant")

        assert run.status == RunStatus.AWAITING_TIMER
        assert run.next_retry_at > clock.now
        clock.advance(seconds=1)
        container.scheduler.tick()
        assert container.stores.runs.get(run.id).status == RunStatus.COMPLETED

    def test_sweep_before_wake_up_is_noop(self, container, save, clock):
        save(approval_workflow())
        run = container.executor.start_run("wf-approval", {"amount": 250})

        clock.advance(minutes=4)
        report = container.scheduler.tick()

        assert report.timers_processed == 0
        assert container.stores.runs.get(run.id).status == RunStatus.AWAITING_TIMER

    def test_completes_true_branch_after_timer(self, container, save, clock, steps):
        save(approval_workflow())
        run = container.executor.start_run("wf-approval", {"amount": 250})

        clock.advance(minutes=5)
        report = container.scheduler.tick()
        run = container.stores.runs.get(run.id)

        assert report.timers_processed == 1
        assert run.status == RunStatus.COMPLETED
        assert run.context["approved"] == {"conditionMet": True}
        assert len(steps.calls_for("webhook")) == 1
        assert steps.calls_for("update_status") == []
        assert node_ids(container, run.id) == ["trigger", "wait", "email", "approved", "hook"]
        assert run.duration_ms == 5 * 60 * 1000

        definition = container.stores.definitions.get("wf-approval")
        assert (definition.run_count, definition.success_count) == (1, 1)
        assert definition.last_run_at == clock.now

    def test_false_branch(self, container, save, clock, steps):
        save(approval_workflow())
        run = container.executor.start_run("wf-approval", {"amount": 5000})

        clock.advance(minutes=5)
        container.scheduler.tick()

        assert container.stores.runs.get(run.id).status == RunStatus.COMPLETED
        assert steps.calls_for("webhook") == []
        assert steps.calls_for("update_status")[0][1] == {"status": "hold"}

    def test_steps_see_prior_outputs(self, container, save, steps):
        save(linear_workflow(("email", "send_email"), ("hook", "webhook")))
        steps.script("send_email", {"message_id": "m-1"})

        container.executor.start_run("wf-linear", {"to": "a@b.c"})

        _, config, context = steps.calls_for("webhook")[0]
        assert context["trigger"] == {"to": "a@b.c"}
        assert context["email"] == {"message_id": "m-1"}

    def test_expression_edges_route_on_output(self, container, save, steps):
        nodes = [
            Node(id="trigger", type="trigger"),
            Node(id="score", type="ai_decision"),
            Node(id="hook", type="webhook"),
            Node(id="hold", type="update_status"),
        ]
        edges = [
            Edge(id="e1", source_node_id="trigger", target_node_id="score"),
            Edge(id="e2", source_node_id="score", target_node_id="hook", condition="output.score > 0.5"),
            Edge(id="e3", source_node_id="score", target_node_id="hold", condition="output.score <= 0.5"),
        ]
        save(WorkflowDefinition.create("Routing", nodes, edges, workflow_id="wf-route"))
        steps.script("ai_decision", {"score": 0.2})

        run = container.executor.start_run("wf-route")

        assert run.status == RunStatus.COMPLETED
        assert node_ids(container, run.id) == ["trigger", "score", "hold"]

    def test_no_matching_edge_completes(self, container, save, steps):
        nodes = [Node(id="trigger", type="trigger"), Node(id="hook", type="webhook")]
        edges = [Edge(id="e1", source_node_id="trigger", target_node_id="hook", condition="trigger.go")]
        save(WorkflowDefinition.create("Gated", nodes, edges, workflow_id="wf-gated"))

        run = container.executor.start_run("wf-gated", {"go": False})

        assert run.status == RunStatus.COMPLETED
        assert steps.calls == []


# ── Preconditions ────────────────────────────────────────────────────────


class TestStartPreconditions:
    def test_unknown_workflow(self, container):
        with pytest.raises(WorkflowNotFoundError):
            container.executor.start_run("nope")

    def test_disabled_workflow(self, container, save):
        save(linear_workflow(("email", "send_email"), enabled=False))
        with pytest.raises(ResumeRejectedError, match="disabled"):
            container.executor.start_run("wf-linear")
        assert container.stores.runs.count() == 0


# ── Failures ─────────────────────────────────────────────────────────────


class TestRetries:
    def test_retries_then_dead_letters(self, container, save, clock, steps):
        save(linear_workflow(("email", "send_email")))
        steps.script("send_email", *[RuntimeError("smtp down")] * 3)

        run = container.executor.start_run("wf-linear")
        assert run.status == RunStatus.RETRYING
        assert run.retry_count == 1
        assert run.next_retry_at == clock.now + timedelta(seconds=1)
        assert "smtp down" in run.error_message

        clock.advance(seconds=1)
        container.scheduler.tick()
        run = container.stores.runs.get(run.id)
        assert run.status == RunStatus.RETRYING
        assert run.retry_count == 2
        assert run.next_retry_at == clock.now + timedelta(seconds=2)

        clock.advance(seconds=2)
        container.scheduler.tick()
        run = container.stores.runs.get(run.id)
        assert run.status == RunStatus.FAILED
        assert run.retry_count == 3

        entry = container.stores.dead_letters.get_for_run(run.id)
        assert entry.failure_reason == "Retry limit reached: 3/3 attempts exhausted"
        assert entry.failed_at_node == "email"
        assert entry.retry_count == 3

        logs = [e for e in container.stores.step_logs.list_for_run(run.id) if e.node_id == "email"]
        assert [e.attempt for e in logs] == [1, 2, 3]
        assert all(e.status == StepStatus.FAILED for e in logs)
        assert container.stores.definitions.get("wf-linear").failure_count == 1

    def test_recovers_on_retry_without_rerunning_earlier_steps(self, container, save, clock, steps):
        save(linear_workflow(("email", "send_email"), ("hook", "webhook")))
        steps.script("webhook", RuntimeError("502"))

        run = container.executor.start_run("wf-linear")
        assert run.current_node_id == "hook"

        clock.advance(seconds=1)
        container.scheduler.tick()
        run = container.stores.runs.get(run.id)

        assert run.status == RunStatus.COMPLETED
        assert len(steps.calls_for("send_email")) == 1
        assert len(steps.calls_for("webhook")) == 2
        assert node_ids(container, run.id) == ["trigger", "email", "hook", "hook"]

    def test_definition_policy_overrides_default(self, container, save, steps):
        save(linear_workflow(("email", "send_email"), retry_policy=RetryPolicy(max_retries=1, jitter=0)))
        steps.script("send_email", RuntimeError("nope"))

        run = container.executor.start_run("wf-linear")

        assert run.status == RunStatus.FAILED
        entry = container.stores.dead_letters.get_for_run(run.id)
        assert entry.failure_reason == "Retry limit reached: 1/1 attempts exhausted"

    def test_unknown_node_type_is_fatal(self, container, save):
        save(linear_workflow(("x", "mystery")))

        run = container.executor.start_run("wf-linear", {"k": "v"})

        assert run.status == RunStatus.FAILED
        assert run.retry_count == 0
        entry = container.stores.dead_letters.get_for_run(run.id)
        assert entry.failure_reason.startswith("Fatal: ")
        assert "mystery" in entry.last_error
        assert entry.trigger_data == {"k": "v"}

    def test_fatal_step_error_skips_retries(self, container, save, steps):
        save(linear_workflow(("email", "send_email")))
        steps.script("send_email", DefinitionError("template missing"))

        run = container.executor.start_run("wf-linear")

        assert run.status == RunStatus.FAILED
        assert container.stores.dead_letters.get_for_run(run.id).failure_reason == "Fatal: template missing"

    def test_non_mapping_output_is_a_step_failure(self, container, save, steps):
        save(linear_workflow(("hook", "webhook")))
        steps.script("webhook", ["not", "a", "mapping"])

        run = container.executor.start_run("wf-linear")

        assert run.status == RunStatus.RETRYING
        assert "expected a mapping" in run.error_message

    def test_step_timeout_is_retryable(self, container, save, registry):
        release = threading.Event()
        registry.register("slow", lambda config, context: release.wait(5) and {})
        nodes = [Node(id="trigger", type="trigger"), Node(id="slow", type="slow", timeout_seconds=0.05)]
        edges = [Edge(id="e1", source_node_id="trigger", target_node_id="slow")]
        save(WorkflowDefinition.create("Slow", nodes, edges, workflow_id="wf-slow"))

        try:
            run = container.executor.start_run("wf-slow")
        finally:
            release.set()

        assert run.status == RunStatus.RETRYING
        assert "timed out" in run.error_message

    def test_run_deadline_is_fatal(self, clock, registry, steps):
        container = build_container(
            make_settings(run_ttl_seconds=60), registry=registry, memory=True, clock=clock
        )
        container.stores.definitions.save(approval_workflow())
        run = container.executor.start_run("wf-approval", {"amount": 1})
        assert run.deadline_at == clock.now + timedelta(seconds=60)

        clock.advance(minutes=5)
        container.scheduler.tick()
        run = container.stores.runs.get(run.id)

        assert run.status == RunStatus.FAILED
        assert "deadline" in run.error_message
        assert steps.calls_for("send_email") == []


# ── Durability ───────────────────────────────────────────────────────────


class TestReplay:
    def test_completed_step_is_not_dispatched_again(self, container, save, clock, steps):
        definition = save(linear_workflow(("email", "send_email"), ("hook", "webhook")))
        run = WorkflowRun.create(definition, {"x": 1}, now=clock())
        run.current_node_id = "email"
        container.stores.runs.create(run)
        container.stores.step_logs.append(StepLogEntry(
            id=new_id(),
            run_id=run.id,
            node_id="email",
            node_type="send_email",
            node_name="Email",
            status=StepStatus.COMPLETED,
            output_snapshot={"cached": True},
            started_at=clock(),
        ))

        result = container.executor.execute(run)

        assert result.status == RunStatus.COMPLETED
        assert steps.calls_for("send_email") == []
        assert result.context["email"] == {"cached": True}
        assert steps.calls_for("webhook")[0][2]["email"] == {"cached": True}

    def test_execute_requires_running(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        with pytest.raises(ResumeRejectedError):
            container.executor.execute(run)

    def test_lost_cas_aborts_without_overwriting(self, container, save, steps):
        save(linear_workflow(("email", "send_email"), ("hook", "webhook")))
        cancelled = {}

        def cancel_mid_flight(config, context):
            run_id = container.stores.runs.list()[0].id
            cancelled["run"] = container.executor.cancel(run_id, "operator stop")
            return {}

        container.registry.register("send_email", cancel_mid_flight)

        run = container.executor.start_run("wf-linear")

        assert run.status == RunStatus.CANCELLED
        assert run.error_message == "operator stop"
        assert steps.calls_for("webhook") == []


# ── Resume / signals ─────────────────────────────────────────────────────


class TestResume:
    def test_signal_data_merged_into_wait_node(self, container, save, steps):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        assert run.status == RunStatus.AWAITING_SIGNAL
        assert run.awaiting_signal_type == "approval"

        run = container.executor.resume(run.id, {"approved_by": "ana"})

        assert run.status == RunStatus.COMPLETED
        assert run.context["await"] == {"signalType": "approval", "approved_by": "ana"}
        assert steps.calls_for("webhook")[0][2]["await"]["approved_by"] == "ana"

    def test_unknown_run(self, container):
        with pytest.raises(RunNotFoundError):
            container.executor.resume("missing")

    def test_terminal_run_rejected(self, container, save):
        save(linear_workflow(("email", "send_email")))
        run = container.executor.start_run("wf-linear")
        with pytest.raises(ResumeRejectedError):
            container.executor.resume(run.id)

    def test_expected_status_mismatch_leaves_run_untouched(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")

        with pytest.raises(ResumeRejectedError, match="expected retrying"):
            container.executor.resume(run.id, expected_status=RunStatus.RETRYING)
        assert container.stores.runs.get(run.id).status == RunStatus.AWAITING_SIGNAL

    def test_running_run_rejected_and_untouched(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        container.stores.runs.claim(run.id, RunStatus.AWAITING_SIGNAL)
        logs_before = node_ids(container, run.id)

        with pytest.raises(ResumeRejectedError, match="running"):
            container.executor.resume(run.id, {"approved_by": "ana"})

        stored = container.stores.runs.get(run.id)
        assert stored.status == RunStatus.RUNNING
        assert stored.current_node_id == "await"
        assert "approved_by" not in stored.context["await"]
        assert node_ids(container, run.id) == logs_before

    def test_cancelled_run_rejected_and_skipped_by_scheduler(self, container, save, clock, steps):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        container.executor.cancel(run.id)

        with pytest.raises(ResumeRejectedError, match="cancelled"):
            container.executor.resume(run.id, {"approved_by": "ana"})
        clock.advance(minutes=10)
        container.scheduler.tick()

        stored = container.stores.runs.get(run.id)
        assert stored.status == RunStatus.CANCELLED
        assert steps.calls_for("webhook") == []
        assert node_ids(container, run.id) == ["trigger", "await"]

    def test_wait_node_without_signal_type_waits_for_default(self, container, save, steps):
        nodes = [
            Node(id="trigger", type="trigger"),
            Node(id="hold", type="wait_for_signal"),
            Node(id="hook", type="webhook"),
        ]
        edges = [
            Edge(id="e1", source_node_id="trigger", target_node_id="hold"),
            Edge(id="e2", source_node_id="hold", target_node_id="hook"),
        ]
        save(WorkflowDefinition.create("Hold", nodes, edges, workflow_id="wf-hold"))

        run = container.executor.start_run("wf-hold")

        assert run.status == RunStatus.AWAITING_SIGNAL
        assert run.awaiting_signal_type == DEFAULT_SIGNAL_TYPE
        assert container.executor.resume(run.id, {}).status == RunStatus.COMPLETED

    def test_missing_definition_dead_letters(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        container.stores.definitions._items.clear()

        run = container.executor.resume(run.id, {})

        assert run.status == RunStatus.FAILED
        assert container.stores.dead_letters.get_for_run(run.id).workflow_name is None


class TestCancel:
    def test_cancel_waiting_run(self, container, save, clock):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        clock.advance(seconds=30)

        run = container.executor.cancel(run.id)

        assert run.status == RunStatus.CANCELLED
        assert run.error_message == "Cancelled by operator"
        assert run.awaiting_signal_type is None
        assert run.duration_ms == 30_000

    def test_cancel_terminal_rejected(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        container.executor.cancel(run.id)
        with pytest.raises(ResumeRejectedError, match="already cancelled"):
            container.executor.cancel(run.id)


# ── Compensation ─────────────────────────────────────────────────────────


class TestCompensation:
    def _failed_checkout(self, container, save, steps):
        save(compensating_workflow())
        steps.script("webhook", {"charge_id": "ch_1"})
        steps.script("update_status", DefinitionError("bad status"))
        run = container.executor.start_run("wf-checkout")
        assert run.status == RunStatus.FAILED
        return run

    def test_records_compensations_in_order(self, container, save, steps):
        run = self._failed_checkout(container, save, steps)
        assert [c["nodeId"] for c in run.compensations] == ["charge", "email"]
        assert run.compensations[0]["input"] == {"config": {"amount": 40}, "output": {"charge_id": "ch_1"}}

    def test_runs_in_reverse(self, container, save, steps):
        run = self._failed_checkout(container, save, steps)

        run = container.executor.compensate(run.id)

        assert run.compensation_status == CompensationStatus.COMPLETED
        assert run.compensations == []
        assert [c[0] for c in steps.calls[-2:]] == ["notify", "refund"]
        assert steps.calls_for("refund")[0][1]["output"] == {"charge_id": "ch_1"}
        assert node_ids(container, run.id)[-2:] == ["email:compensate", "charge:compensate"]

    def test_partial_when_a_compensation_fails(self, container, save, steps):
        run = self._failed_checkout(container, save, steps)
        steps.script("refund", RuntimeError("gateway down"))

        run = container.executor.compensate(run.id)

        assert run.compensation_status == CompensationStatus.PARTIAL
        assert len(steps.calls_for("notify")) == 1

    def test_rejects_non_terminal_and_empty(self, container, save, steps):
        save(signal_workflow())
        waiting = container.executor.start_run("wf-signal")
        with pytest.raises(ResumeRejectedError):
            container.executor.compensate(waiting.id)

        run = self._failed_checkout(container, save, steps)
        container.executor.compensate(run.id)
        with pytest.raises(ResumeRejectedError, match="no recorded compensations"):
            container.executor.compensate(run.id)


# ── Dry run ──────────────────────────────────────────────────────────────


class TestDryRun:
    def test_valid_definition(self, container, save, steps):
        save(approval_workflow())

        preview = container.executor.dry_run("wf-approval")

        assert preview["valid"] is True
        assert preview["errors"] == []
        assert [n["id"] for n in preview["nodes"]] == ["trigger", "wait", "email", "approved", "hook", "hold"]
        assert preview["nodes"][2] == {
            "id": "email",
            "type": "send_email",
            "name": "Ask for approval",
            "builtin": False,
            "executor_registered": True,
            "compensation": None,
        }
        assert steps.calls == []
        assert container.stores.runs.count() == 0

    def test_reports_unregistered_types_and_bad_conditions(self, container, save):
        nodes = [
            Node(id="trigger", type="trigger"),
            Node(id="x", type="mystery", compensation="undo_mystery"),
            Node(id="check", type="condition", config={}),
        ]
        edges = [
            Edge(id="e1", source_node_id="trigger", target_node_id="x"),
            Edge(id="e2", source_node_id="x", target_node_id="check", condition="output.ok ==="),
        ]
        save(WorkflowDefinition.create("Broken", nodes, edges, workflow_id="wf-broken"))

        preview = container.executor.dry_run("wf-broken")

        assert preview["valid"] is False
        assert len(preview["errors"]) == 4
        assert any("'mystery'" in e for e in preview["errors"])
        assert any("undo_mystery" in e for e in preview["errors"])
        assert any("no expression" in e for e in preview["errors"])
        assert any(e.startswith("Edge 'e2'") for e in preview["errors"])

    def test_structural_errors(self, container, save):
        nodes = [Node(id="trigger", type="trigger"), Node(id="orphan", type="webhook")]
        save(WorkflowDefinition.create("Orphan", nodes, [], workflow_id="wf-orphan"))

        preview = container.executor.dry_run("wf-orphan")

        assert preview["valid"] is False
        assert preview["nodes"] == []
        assert "not reachable" in preview["errors"][0]
