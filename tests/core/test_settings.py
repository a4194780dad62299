"""Tests for FlowSettings environment loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from flowspine.core.settings import FlowSettings


class TestFlowSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FLOWSPINE_LOG_LEVEL", raising=False)
        settings = FlowSettings(_env_file=None)
        assert settings.database_path == "flowspine.db"
        assert settings.step_timeout_seconds == 30.0
        assert settings.run_ttl_seconds is None
        assert settings.scheduler_page_size == 10
        assert settings.signal_page_size == 20
        assert settings.api_prefix == "/api/v1"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("FLOWSPINE_RETRY_BACKOFF", "linear")
        monkeypatch.setenv("FLOWSPINE_SCHEDULER_INTERVAL_SECONDS", "120")
        monkeypatch.setenv("FLOWSPINE_RUN_TTL_SECONDS", "3600")
        settings = FlowSettings(_env_file=None)
        assert settings.retry_backoff == "linear"
        assert settings.scheduler_interval_seconds == 120.0
        assert settings.run_ttl_seconds == 3600.0

    def test_log_level_is_normalized(self):
        assert FlowSettings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError, match="Unknown log level"):
            FlowSettings(_env_file=None, log_level="chatty")

    def test_unknown_backoff(self):
        with pytest.raises(ValidationError):
            FlowSettings(_env_file=None, retry_backoff="random")
