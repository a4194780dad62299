"""Workflow scheduler: periodic sweep that wakes suspended runs.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SWEEP                                                                        │
│                                                                               │
│   tick()                                                                      │
│     ├── lock.acquire()            ── busy → SweepReport(skipped_locked=True)  │
│     ├── 1. retry sweep            retrying, next_retry_at <= now  (page 10)   │
│     │      └── executor.resume(run_id, expected_status=retrying)              │
│     ├── 2. timer sweep            awaiting_timer, same selection   (page 10)  │
│     ├── 3. signal sweep           unprocessed signals, oldest first (page 20) │
│     │      └── deliver_signal()   claim signal, then resume iff matching      │
│     └── lock.release()                                                        │
│                                                                               │
│  Failure isolation: every item is handled in its own try block; errors are    │
│  collected into the report, never raised out of tick().                       │
└──────────────────────────────────────────────────────────────────────────────┘

The scheduler never mutates a run itself. Claiming (the status CAS), step
execution, and the retry ceiling on invocation failure all belong to the
executor; the scheduler only decides *which* runs are due.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from flowspine.core.errors import ResumeRejectedError
from flowspine.core.logging import LogContext, get_logger
from flowspine.engine.executor import WorkflowExecutor
from flowspine.engine.models import Clock, RunStatus, Signal
from flowspine.scheduling.lock import SWEEP_LOCK_NAME, SweepLock
from flowspine.store.base import Stores

logger = get_logger(__name__)


class DeliveryOutcome(str, Enum):
    """Result of handing one signal to its run."""

    DELIVERED = "delivered"
    IGNORED = "ignored"                      # run not waiting for this signal
    ALREADY_PROCESSED = "already_processed"  # another sweep consumed it


@dataclass
class SweepError:
    """One failed item within a sweep."""

    sweep: str
    error: str
    run_id: str | None = None
    signal_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep": self.sweep,
            "error": self.error,
            "run_id": self.run_id,
            "signal_id": self.signal_id,
        }


@dataclass
class SweepReport:
    """Outcome of one :meth:`WorkflowScheduler.tick`."""

    started_at: datetime
    finished_at: datetime | None = None
    retries_processed: int = 0
    timers_processed: int = 0
    signals_processed: int = 0
    signals_delivered: int = 0
    skipped: int = 0
    skipped_locked: bool = False
    errors: list[SweepError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "retries_processed": self.retries_processed,
            "timers_processed": self.timers_processed,
            "signals_processed": self.signals_processed,
            "signals_delivered": self.signals_delivered,
            "skipped": self.skipped,
            "skipped_locked": self.skipped_locked,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class SchedulerStats:
    """Running totals across ticks."""

    tick_count: int = 0
    ticks_skipped_locked: int = 0
    runs_resumed: int = 0
    signals_delivered: int = 0
    errors: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "ticks_skipped_locked": self.ticks_skipped_locked,
            "runs_resumed": self.runs_resumed,
            "signals_delivered": self.signals_delivered,
            "errors": self.errors,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


class WorkflowScheduler:
    """Three-pass sweep over retrying, timer, and signal-waiting runs.

    Example:
        >>> scheduler = WorkflowScheduler(stores, executor, MemorySweepLock())
        >>> report = scheduler.tick()
        >>> report.retries_processed, report.errors
        (0, [])
    """

    def __init__(
        self,
        stores: Stores,
        executor: WorkflowExecutor,
        lock: SweepLock,
        *,
        page_size: int = 10,
        signal_page_size: int = 20,
        lock_ttl_seconds: int = 300,
        clock: Clock | None = None,
    ) -> None:
        self.stores = stores
        self.executor = executor
        self.lock = lock
        self.page_size = page_size
        self.signal_page_size = signal_page_size
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock or executor.clock
        self.stats = SchedulerStats()

    # === Tick ===

    def tick(self) -> SweepReport:
        """Run one sweep; never raises for per-item failures."""
        report = SweepReport(started_at=self.clock())
        self.stats.tick_count += 1
        self.stats.last_tick = report.started_at

        if not self.lock.acquire(SWEEP_LOCK_NAME, self.lock_ttl_seconds):
            report.skipped_locked = True
            report.finished_at = self.clock()
            self.stats.ticks_skipped_locked += 1
            logger.info("sweep_skipped_locked", holder=self.lock.holder(SWEEP_LOCK_NAME))
            return report

        try:
            report.retries_processed = self._sweep_due(RunStatus.RETRYING, "retry", report)
            report.timers_processed = self._sweep_due(RunStatus.AWAITING_TIMER, "timer", report)
            self._sweep_signals(report)
        finally:
            self.lock.release(SWEEP_LOCK_NAME)

        report.finished_at = self.clock()
        self.stats.runs_resumed += report.retries_processed + report.timers_processed
        self.stats.signals_delivered += report.signals_delivered
        self.stats.errors += len(report.errors)
        if report.errors:
            self.stats.last_error = report.errors[-1].error

        logger.info(
            "sweep_completed",
            retries=report.retries_processed,
            timers=report.timers_processed,
            signals=report.signals_processed,
            delivered=report.signals_delivered,
            skipped=report.skipped,
            errors=len(report.errors),
        )
        return report

    def _sweep_due(self, status: RunStatus, sweep: str, report: SweepReport) -> int:
        try:
            due = self.stores.runs.list_due(status, self.clock(), self.page_size)
        except Exception as e:
            logger.exception("sweep_query_failed", sweep=sweep)
            report.errors.append(SweepError(sweep=sweep, error=str(e)))
            return 0

        processed = 0
        for run in due:
            with LogContext(run_id=run.id, workflow_id=run.workflow_id):
                try:
                    self._resume(run.id, expected_status=status)
                    processed += 1
                except ResumeRejectedError as e:
                    report.skipped += 1
                    logger.debug("sweep_item_skipped", sweep=sweep, reason=e.message)
                except Exception as e:
                    logger.exception("sweep_item_failed", sweep=sweep)
                    report.errors.append(SweepError(sweep=sweep, error=str(e), run_id=run.id))
        return processed

    def _sweep_signals(self, report: SweepReport) -> None:
        try:
            pending = self.stores.signals.list_unprocessed(self.signal_page_size)
        except Exception as e:
            logger.exception("sweep_query_failed", sweep="signal")
            report.errors.append(SweepError(sweep="signal", error=str(e)))
            return

        for signal in pending:
            try:
                outcome = self.deliver_signal(signal)
            except Exception as e:
                # The signal was claimed before the failure and stays consumed.
                logger.exception("sweep_item_failed", sweep="signal", signal_id=signal.id)
                report.signals_processed += 1
                report.errors.append(
                    SweepError(sweep="signal", error=str(e), run_id=signal.run_id, signal_id=signal.id)
                )
                continue
            if outcome == DeliveryOutcome.ALREADY_PROCESSED:
                report.skipped += 1
                continue
            report.signals_processed += 1
            if outcome == DeliveryOutcome.DELIVERED:
                report.signals_delivered += 1

    # === Delivery ===

    def deliver_signal(self, signal: Signal) -> DeliveryOutcome:
        """Consume ``signal`` and resume its run if it is waiting for this type.

        The signal is marked processed first, so concurrent callers agree on
        a single consumer. A signal for a run that is not awaiting it is
        dropped.
        """
        if not self.stores.signals.mark_processed(signal.id, self.clock()):
            return DeliveryOutcome.ALREADY_PROCESSED

        run = self.stores.runs.get(signal.run_id)
        if (
            run is None
            or run.status != RunStatus.AWAITING_SIGNAL
            or run.awaiting_signal_type != signal.signal_type
        ):
            logger.info(
                "signal_ignored",
                signal_id=signal.id,
                run_id=signal.run_id,
                signal_type=signal.signal_type,
                run_status=run.status.value if run else None,
                awaiting=run.awaiting_signal_type if run else None,
            )
            return DeliveryOutcome.IGNORED

        try:
            self._resume(run.id, signal.signal_data, expected_status=RunStatus.AWAITING_SIGNAL)
        except ResumeRejectedError:
            logger.info("signal_ignored", signal_id=signal.id, run_id=run.id, reason="run claimed concurrently")
            return DeliveryOutcome.IGNORED

        logger.info("signal_delivered", signal_id=signal.id, run_id=run.id, signal_type=signal.signal_type)
        return DeliveryOutcome.DELIVERED

    def _resume(
        self,
        run_id: str,
        signal_data: dict[str, Any] | None = None,
        *,
        expected_status: RunStatus,
    ) -> None:
        try:
            self.executor.resume(run_id, signal_data, expected_status=expected_status)
        except ResumeRejectedError:
            raise
        except Exception as e:
            self.executor.record_invocation_failure(run_id, e)
            raise

    # === Introspection ===

    def health(self) -> dict[str, Any]:
        return {
            "lock_holder": self.lock.holder(SWEEP_LOCK_NAME),
            "instance_id": self.lock.instance_id,
            "page_size": self.page_size,
            "signal_page_size": self.signal_page_size,
            "stats": self.stats.to_dict(),
        }
