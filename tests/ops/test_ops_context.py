"""Tests for OperationContext."""

from __future__ import annotations

import structlog

from flowspine.ops.context import OperationContext


class TestOperationContext:
    def test_defaults(self, container):
        ctx = OperationContext(container=container)
        assert ctx.caller == "sdk"
        assert ctx.dry_run is False
        assert len(ctx.request_id) == 16

    def test_request_ids_differ(self, container):
        first, second = OperationContext(container=container), OperationContext(container=container)
        assert first.request_id != second.request_id

    def test_logging_binds_request_identity(self, ctx):
        with ctx.logging():
            bound = structlog.contextvars.get_contextvars()
            assert bound["request_id"] == ctx.request_id
            assert bound["caller"] == "test"
        assert "request_id" not in structlog.contextvars.get_contextvars()
