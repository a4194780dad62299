"""Single-flight sweep lease.

Only one scheduler tick may run at a time, across threads and processes
sharing a database. The lease is a row in ``workflow_scheduler_locks``
with an expiry, so a crashed holder cannot block sweeps forever.

Lease Flow::

    acquire(name, ttl)
      1. DELETE the row if its expires_at has passed
      2. INSERT OR IGNORE a new row owned by this instance
      3. rowcount > 0 → acquired; otherwise someone else holds it

    release(name)
      DELETE the row only if owned by this instance
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from flowspine.core.connection import SqliteConnection
from flowspine.core.logging import get_logger
from flowspine.engine.models import Clock, utcnow

logger = get_logger(__name__)

SWEEP_LOCK_NAME = "workflow-scheduler-sweep"


def _ts(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SweepLock(ABC):
    """Named lease with TTL-based auto-expiry."""

    def __init__(self, instance_id: str | None = None, clock: Clock = utcnow) -> None:
        self.instance_id = instance_id or str(uuid4())
        self.clock = clock

    @abstractmethod
    def acquire(self, name: str = SWEEP_LOCK_NAME, ttl_seconds: int = 300) -> bool:
        """Take the lease. Returns ``False`` if another holder has a live lease."""

    @abstractmethod
    def release(self, name: str = SWEEP_LOCK_NAME) -> bool:
        """Drop the lease if this instance holds it."""

    @abstractmethod
    def holder(self, name: str = SWEEP_LOCK_NAME) -> str | None:
        """Instance id holding a live lease, if any."""

    def is_locked(self, name: str = SWEEP_LOCK_NAME) -> bool:
        return self.holder(name) is not None


class DatabaseSweepLock(SweepLock):
    """Lease stored in SQLite.

    Example:
        >>> lock = DatabaseSweepLock(conn, instance_id="scheduler-1")
        >>> if lock.acquire(ttl_seconds=300):
        ...     try:
        ...         sweep()
        ...     finally:
        ...         lock.release()
    """

    TABLE = "workflow_scheduler_locks"

    def __init__(self, conn: SqliteConnection, instance_id: str | None = None, clock: Clock = utcnow) -> None:
        super().__init__(instance_id, clock)
        self.conn = conn

    def acquire(self, name: str = SWEEP_LOCK_NAME, ttl_seconds: int = 300) -> bool:
        now = self.clock()
        expires = now + timedelta(seconds=ttl_seconds)
        try:
            with self.conn.lock:
                self.conn.execute(
                    f"DELETE FROM {self.TABLE} WHERE lock_name = ? AND expires_at <= ?",
                    (name, _ts(now)),
                )
                cursor = self.conn.execute(
                    f"INSERT OR IGNORE INTO {self.TABLE} (lock_name, locked_by, locked_at, expires_at) "
                    "VALUES (?, ?, ?, ?)",
                    (name, self.instance_id, _ts(now), _ts(expires)),
                )
                acquired = cursor.rowcount > 0
                self.conn.commit()
        except Exception as e:
            logger.error("sweep_lock_acquire_failed", lock=name, error=str(e))
            return False

        if acquired:
            logger.debug("sweep_lock_acquired", lock=name, holder=self.instance_id)
        else:
            logger.debug("sweep_lock_busy", lock=name)
        return acquired

    def release(self, name: str = SWEEP_LOCK_NAME) -> bool:
        try:
            with self.conn.lock:
                cursor = self.conn.execute(
                    f"DELETE FROM {self.TABLE} WHERE lock_name = ? AND locked_by = ?",
                    (name, self.instance_id),
                )
                released = cursor.rowcount > 0
                self.conn.commit()
        except Exception as e:
            logger.error("sweep_lock_release_failed", lock=name, error=str(e))
            return False
        return released

    def holder(self, name: str = SWEEP_LOCK_NAME) -> str | None:
        with self.conn.lock:
            row = self.conn.execute(
                f"SELECT locked_by FROM {self.TABLE} WHERE lock_name = ? AND expires_at > ?",
                (name, _ts(self.clock())),
            ).fetchone()
        return row[0] if row else None


@dataclass
class _Lease:
    holder: str
    expires_at: datetime


class MemorySweepLock(SweepLock):
    """Process-local lease for the in-memory backend.

    Share one instance's ``leases`` between schedulers to model several
    scheduler processes in tests.
    """

    def __init__(
        self,
        instance_id: str | None = None,
        clock: Clock = utcnow,
        leases: dict[str, _Lease] | None = None,
    ) -> None:
        super().__init__(instance_id, clock)
        self.leases: dict[str, _Lease] = leases if leases is not None else {}
        self._mutex = threading.Lock()

    def acquire(self, name: str = SWEEP_LOCK_NAME, ttl_seconds: int = 300) -> bool:
        now = self.clock()
        with self._mutex:
            lease = self.leases.get(name)
            if lease is not None and lease.expires_at > now:
                return False
            self.leases[name] = _Lease(self.instance_id, now + timedelta(seconds=ttl_seconds))
            return True

    def release(self, name: str = SWEEP_LOCK_NAME) -> bool:
        with self._mutex:
            lease = self.leases.get(name)
            if lease is None or lease.holder != self.instance_id:
                return False
            del self.leases[name]
            return True

    def holder(self, name: str = SWEEP_LOCK_NAME) -> str | None:
        with self._mutex:
            lease = self.leases.get(name)
            if lease is None or lease.expires_at <= self.clock():
                return None
            return lease.holder

    def sibling(self, instance_id: str | None = None) -> MemorySweepLock:
        """Another lock instance contending for the same leases."""
        sibling = MemorySweepLock(instance_id, self.clock, self.leases)
        sibling._mutex = self._mutex
        return sibling
