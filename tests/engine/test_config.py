"""Tests for the versioned execution config snapshot."""

from __future__ import annotations

import dataclasses

import pytest

from flowspine.engine.config import ExecutionConfig, ExecutionConfigHolder
from flowspine.engine.retry import RetryPolicy
from tests._support.workflows import make_settings


class TestExecutionConfig:
    def test_from_settings(self):
        cfg = ExecutionConfig.from_settings(
            make_settings(retry_backoff="linear", default_max_retries=5, run_ttl_seconds=3600)
        )
        assert cfg.retry_policy.backoff == "linear"
        assert cfg.retry_policy.max_retries == 5
        assert cfg.run_ttl_seconds == 3600
        assert cfg.step_timeout_seconds is None

    def test_snapshot_is_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ExecutionConfig().version = 2


class TestExecutionConfigHolder:
    def test_update_replaces_snapshot_and_bumps_version(self):
        holder = ExecutionConfigHolder()
        before = holder.snapshot()
        after = holder.update(retry_policy=RetryPolicy(max_retries=9))
        assert after.version == before.version + 1
        assert holder.snapshot() is after
        # Readers holding the old snapshot keep a consistent view.
        assert before.retry_policy.max_retries == 3
