"""Tests for dead-letter operations."""

from __future__ import annotations

import pytest

from flowspine.ops.dlq import get_dead_letter, list_dead_letters, requeue_dead_letter, resolve_dead_letter
from flowspine.ops.requests import ListDeadLettersRequest, ResolveDeadLetterRequest, StartRunRequest
from flowspine.ops.runs import start_run
from tests._support.workflows import linear_workflow


@pytest.fixture()
def entry_id(ctx, save):
    """A dead-lettered run of an unregistered step type."""
    save(linear_workflow(("x", "mystery")))
    run_id = start_run(ctx, StartRunRequest(workflow_id="wf-linear", trigger_data={"order": 9})).data["id"]
    return ctx.container.stores.dead_letters.get_for_run(run_id).id


class TestListAndGet:
    def test_list(self, ctx, entry_id):
        result = list_dead_letters(ctx, ListDeadLettersRequest())
        assert result.total == 1
        assert result.data[0]["id"] == entry_id

    def test_get(self, ctx, entry_id):
        assert get_dead_letter(ctx, entry_id).data["trigger_data"] == {"order": 9}
        assert get_dead_letter(ctx, "nope").error.code == "NOT_FOUND"


class TestRequeue:
    def test_starts_fresh_run_and_resolves(self, ctx, entry_id, registry):
        registry.register("mystery", lambda config, context: {"fixed": True})

        result = requeue_dead_letter(ctx, entry_id)

        assert result.success
        run = result.data["run"]
        assert run["status"] == "completed"
        assert run["trigger_data"] == {"order": 9}
        entry = result.data["dead_letter"]
        assert entry["resolution_action"] == "requeued"
        assert entry["requeued_run_id"] == run["id"]
        assert list_dead_letters(ctx, ListDeadLettersRequest()).total == 0

    def test_twice_is_conflict(self, ctx, entry_id):
        requeue_dead_letter(ctx, entry_id)
        assert requeue_dead_letter(ctx, entry_id).error.code == "CONFLICT"

    def test_dry_run(self, dry_ctx, entry_id):
        result = requeue_dead_letter(dry_ctx, entry_id)
        assert result.metadata == {"dry_run": True}
        assert dry_ctx.container.stores.runs.count() == 1

    def test_unknown(self, ctx):
        assert requeue_dead_letter(ctx, "nope").error.code == "NOT_FOUND"


class TestResolve:
    def test_dismiss(self, ctx, entry_id):
        result = resolve_dead_letter(ctx, ResolveDeadLetterRequest(entry_id=entry_id))
        assert result.data["resolution_action"] == "dismissed"
        again = resolve_dead_letter(ctx, ResolveDeadLetterRequest(entry_id=entry_id))
        assert again.error.code == "CONFLICT"

    def test_bad_action(self, ctx, entry_id):
        result = resolve_dead_letter(ctx, ResolveDeadLetterRequest(entry_id=entry_id, action="deleted"))
        assert result.error.code == "VALIDATION_FAILED"
