"""Thread-based periodic driver for :class:`WorkflowScheduler`.

::

    start()
      └── daemon thread:
            while not stop_event.wait(interval):
                scheduler.tick()

    stop()
      └── stop_event.set(); thread.join(timeout)

The first tick fires one interval after ``start()``; pass
``run_immediately=True`` to sweep once straight away.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from flowspine.core.logging import get_logger
from flowspine.scheduling.scheduler import SweepReport, WorkflowScheduler

logger = get_logger(__name__)


class SchedulerRunner:
    """Calls ``scheduler.tick()`` every ``interval_seconds`` on a daemon thread.

    Example:
        >>> runner = SchedulerRunner(scheduler, interval_seconds=60)
        >>> runner.start()
        >>> # ... later ...
        >>> runner.stop()
    """

    name = "thread"

    def __init__(self, scheduler: WorkflowScheduler, interval_seconds: float = 60.0) -> None:
        self.scheduler = scheduler
        self.interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._last_report: SweepReport | None = None
        self._started = False
        self._lock = threading.Lock()

    def start(self, *, run_immediately: bool = False) -> None:
        if self._started:
            logger.warning("scheduler_runner_already_started")
            return
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler_runner_started", interval_seconds=self.interval)
            if run_immediately:
                self._tick_once()
            while not self._stop_event.wait(self.interval):
                self._tick_once()
            logger.info("scheduler_runner_stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="flowspine-scheduler")
        self._thread.start()
        self._started = True

    def _tick_once(self) -> None:
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
        try:
            report = self.scheduler.tick()
        except Exception:
            # tick() isolates item failures; this is a lock or store outage.
            logger.exception("scheduler_tick_failed")
            return
        with self._lock:
            self._last_report = report

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop to stop and wait up to ``timeout`` for the current tick."""
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("scheduler_runner_stop_timeout", timeout=timeout)
        self._started = False

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stopped (or ``timeout``); returns whether the stop event was set."""
        return self._stop_event.wait(timeout)

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_report(self) -> SweepReport | None:
        return self._last_report

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "interval_seconds": self.interval,
            "last_report": self._last_report.to_dict() if self._last_report else None,
            "scheduler": self.scheduler.health(),
        }
