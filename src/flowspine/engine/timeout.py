"""Execution deadline for step dispatch.

A hung StepExecutor would otherwise pin its run in ``running`` forever.
:func:`run_with_timeout` submits the step to a single-worker thread pool and
stops waiting when the deadline passes; the executor turns that into a
retryable :class:`~flowspine.core.errors.StepTimeoutError`.

The abandoned worker keeps running until the step returns on its own and
its result is dropped. Steps are re-invoked on retry anyway, so they must
tolerate at-least-once calls.
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any


class TimeoutExpired(TimeoutError):
    """The callable did not return within ``timeout`` seconds."""

    def __init__(self, operation: str, timeout: float, elapsed: float) -> None:
        self.operation = operation
        self.timeout = timeout
        self.elapsed = elapsed
        super().__init__(f"'{operation}' did not finish within {timeout}s (waited {elapsed:.2f}s)")


def run_with_timeout[T](
    func: Callable[..., T],
    timeout_seconds: float | None,
    *args: Any,
    operation: str | None = None,
) -> T:
    """Return ``func(*args)``, or raise :class:`TimeoutExpired` after ``timeout_seconds``.

    ``None`` calls ``func`` inline on the current thread. Exceptions raised
    by ``func`` propagate unchanged.
    """
    if timeout_seconds is None:
        return func(*args)
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    name = operation or getattr(func, "__name__", "step")
    started = time.monotonic()
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"flowspine-{name}")
    try:
        future = pool.submit(func, *args)
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            if not future.done():
                raise TimeoutExpired(name, timeout_seconds, time.monotonic() - started) from None
        # Finished after all, or the step raised TimeoutError itself.
        return future.result()
    finally:
        # Do not wait for a hung step; the caller has moved on.
        pool.shutdown(wait=False, cancel_futures=True)
