"""Tests for run_with_timeout."""

from __future__ import annotations

import threading

import pytest

from flowspine.engine.timeout import TimeoutExpired, run_with_timeout


class TestRunWithTimeout:
    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a + b, 1.0, 2, 3) == 5

    def test_none_runs_inline(self):
        caller = threading.current_thread()
        assert run_with_timeout(threading.current_thread, None) is caller

    def test_propagates_exceptions(self):
        def boom():
            raise KeyError("x")

        with pytest.raises(KeyError):
            run_with_timeout(boom, 1.0)

    def test_raises_timeout_expired(self):
        release = threading.Event()

        def hang():
            release.wait(5)

        try:
            with pytest.raises(TimeoutExpired) as info:
                run_with_timeout(hang, 0.05, operation="step:slow")
        finally:
            release.set()
        assert info.value.timeout == 0.05
        assert "step:slow" in str(info.value)

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            run_with_timeout(lambda: None, 0)

    def test_runs_on_named_worker_thread(self):
        worker = run_with_timeout(threading.current_thread, 1.0, operation="step:mail")
        assert worker is not threading.current_thread()
        assert worker.name.startswith("flowspine-step:mail")

    def test_step_raising_timeout_error_is_not_a_deadline(self):
        def refuses():
            raise TimeoutError("upstream timed out")

        with pytest.raises(TimeoutError, match="upstream") as info:
            run_with_timeout(refuses, 1.0)
        assert not isinstance(info.value, TimeoutExpired)
