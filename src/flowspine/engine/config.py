"""Versioned execution configuration.

The Executor reads retry and deadline settings once per invocation from an
:class:`ExecutionConfig` snapshot. Updates go through
:class:`ExecutionConfigHolder`, which swaps in a new frozen snapshot, so an
in-flight run never observes a half-applied change.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any

from flowspine.core.settings import FlowSettings
from flowspine.engine.retry import RetryPolicy


@dataclass(frozen=True)
class ExecutionConfig:
    """Immutable engine tunables.

    Attributes:
        version: Incremented on every update
        retry_policy: Default policy for definitions without their own
        step_timeout_seconds: Per-node deadline (``None`` disables)
        run_ttl_seconds: Overall run deadline set at start (``None`` disables)
    """

    version: int = 1
    retry_policy: RetryPolicy = RetryPolicy()
    step_timeout_seconds: float | None = 30.0
    run_ttl_seconds: float | None = None

    @classmethod
    def from_settings(cls, settings: FlowSettings) -> ExecutionConfig:
        return cls(
            retry_policy=RetryPolicy(
                backoff=settings.retry_backoff,
                initial_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                max_retries=settings.default_max_retries,
                jitter=settings.retry_jitter,
            ),
            step_timeout_seconds=settings.step_timeout_seconds,
            run_ttl_seconds=settings.run_ttl_seconds,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "retry_policy": self.retry_policy.to_dict(),
            "step_timeout_seconds": self.step_timeout_seconds,
            "run_ttl_seconds": self.run_ttl_seconds,
        }


class ExecutionConfigHolder:
    """Copy-on-write holder for the current :class:`ExecutionConfig`."""

    def __init__(self, config: ExecutionConfig | None = None) -> None:
        self._config = config or ExecutionConfig()
        self._lock = threading.Lock()

    def snapshot(self) -> ExecutionConfig:
        return self._config

    def update(self, **changes: Any) -> ExecutionConfig:
        """Publish a new snapshot with ``changes`` applied and the version bumped."""
        with self._lock:
            self._config = replace(self._config, version=self._config.version + 1, **changes)
            return self._config
