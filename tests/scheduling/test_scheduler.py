"""Tests for WorkflowScheduler sweeps and signal delivery."""

from __future__ import annotations

from datetime import timedelta

from flowspine.container import build_container
from flowspine.engine.models import RunStatus, Signal, new_id
from flowspine.scheduling.scheduler import DeliveryOutcome
from tests._support.workflows import approval_workflow, linear_workflow, make_settings, signal_workflow


def emit(container, run_id, signal_type="approval", **data):
    signal = Signal(
        id=new_id(),
        run_id=run_id,
        signal_type=signal_type,
        signal_data=data,
        source="test",
        created_at=container.executor.clock(),
    )
    container.stores.signals.create(signal)
    return signal


class TestLocking:
    def test_skips_when_lease_is_held(self, container, save, clock):
        save(approval_workflow())
        run = container.executor.start_run("wf-approval", {"amount": 1})
        clock.advance(minutes=10)
        container.scheduler.lock.sibling("other-host").acquire()

        report = container.scheduler.tick()

        assert report.skipped_locked is True
        assert report.timers_processed == 0
        assert container.stores.runs.get(run.id).status == RunStatus.AWAITING_TIMER
        assert container.scheduler.stats.ticks_skipped_locked == 1

    def test_releases_lease_after_sweep(self, container):
        container.scheduler.tick()
        assert container.scheduler.lock.holder() is None


class TestDueSweeps:
    def test_retry_then_timer_counts(self, container, save, clock, steps):
        save(approval_workflow())
        save(linear_workflow(("email", "send_email")))
        steps.script("send_email", RuntimeError("smtp down"))
        retrying = container.executor.start_run("wf-linear")
        waiting = container.executor.start_run("wf-approval", {"amount": 1})
        assert retrying.status == RunStatus.RETRYING

        clock.advance(minutes=5)
        report = container.scheduler.tick()

        assert (report.retries_processed, report.timers_processed) == (1, 1)
        assert report.ok
        assert container.stores.runs.get(retrying.id).status == RunStatus.COMPLETED
        assert container.stores.runs.get(waiting.id).status == RunStatus.COMPLETED
        assert container.scheduler.stats.runs_resumed == 2

    def test_page_size_bounds_each_sweep(self, clock, registry):
        container = build_container(
            make_settings(scheduler_page_size=2), registry=registry, memory=True, clock=clock
        )
        container.stores.definitions.save(approval_workflow())
        for _ in range(3):
            container.executor.start_run("wf-approval", {"amount": 1})
        clock.advance(minutes=5)

        assert container.scheduler.tick().timers_processed == 2
        assert container.scheduler.tick().timers_processed == 1

    def test_invocation_failure_applies_retry_ceiling(self, container, save, clock, monkeypatch):
        save(linear_workflow(("email", "send_email")))
        run = container.executor.start_run("wf-linear")
        stored = container.stores.runs.get(run.id)
        stored.status = RunStatus.RETRYING
        stored.retry_count = 3
        stored.next_retry_at = clock.now
        container.stores.runs.update(stored)

        real_get = container.stores.definitions.get
        calls = {"n": 0}

        def flaky_get(workflow_id):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("database is locked")
            return real_get(workflow_id)

        monkeypatch.setattr(container.stores.definitions, "get", flaky_get)

        report = container.scheduler.tick()

        assert report.retries_processed == 0
        assert report.errors[0].run_id == run.id
        assert "database is locked" in report.errors[0].error
        failed = container.stores.runs.get(run.id)
        assert failed.status == RunStatus.FAILED
        entry = container.stores.dead_letters.get_for_run(run.id)
        assert entry.failure_reason == "Retry limit reached: 3/3 attempts exhausted"

    def test_invocation_failure_below_ceiling_schedules_retry(self, container, save, clock, monkeypatch):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        emit(container, run.id)
        def boom(*args):
            raise RuntimeError("boom")

        monkeypatch.setattr(container.executor, "_next_node_id", boom)

        report = container.scheduler.tick()

        assert report.signals_processed == 1
        assert len(report.errors) == 1
        after = container.stores.runs.get(run.id)
        assert after.status == RunStatus.RETRYING
        assert after.retry_count == 1
        assert after.next_retry_at == clock.now + timedelta(seconds=1)


class TestSignalDelivery:
    def test_delivers_once(self, container, save, steps):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        signal = emit(container, run.id, approved_by="ana")

        first = container.scheduler.tick()
        second = container.scheduler.tick()

        assert (first.signals_processed, first.signals_delivered) == (1, 1)
        assert second.signals_processed == 0
        assert container.stores.runs.get(run.id).status == RunStatus.COMPLETED
        assert container.stores.signals.get(signal.id).processed_at is not None
        assert len(steps.calls_for("webhook")) == 1

    def test_second_delivery_of_same_signal(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        signal = emit(container, run.id)

        assert container.scheduler.deliver_signal(signal) == DeliveryOutcome.DELIVERED
        assert container.scheduler.deliver_signal(signal) == DeliveryOutcome.ALREADY_PROCESSED

    def test_mismatched_type_is_consumed_and_ignored(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        signal = emit(container, run.id, signal_type="rejection")

        report = container.scheduler.tick()

        assert (report.signals_processed, report.signals_delivered) == (1, 0)
        assert container.stores.runs.get(run.id).status == RunStatus.AWAITING_SIGNAL
        assert container.stores.signals.get(signal.id).processed_at is not None

    def test_signal_for_finished_run_is_ignored(self, container, save):
        save(signal_workflow())
        run = container.executor.start_run("wf-signal")
        container.executor.cancel(run.id)
        signal = emit(container, run.id)

        assert container.scheduler.deliver_signal(signal) == DeliveryOutcome.IGNORED
        assert container.stores.runs.get(run.id).status == RunStatus.CANCELLED


class TestHealth:
    def test_reports_instance_and_stats(self, container):
        container.scheduler.tick()
        health = container.scheduler.health()
        assert health["instance_id"] == "test-1"
        assert health["lock_holder"] is None
        assert health["stats"]["tick_count"] == 1
