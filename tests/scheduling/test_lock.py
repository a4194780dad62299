"""Tests for the single-flight sweep lease."""

from __future__ import annotations

import pytest

from flowspine.core.connection import open_database
from flowspine.scheduling.lock import SWEEP_LOCK_NAME, DatabaseSweepLock, MemorySweepLock
from tests._support.workflows import FakeClock


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "database"])
def pair(request, clock):
    """Two lock instances contending for the same lease."""
    if request.param == "memory":
        first = MemorySweepLock("scheduler-a", clock)
        yield first, first.sibling("scheduler-b")
        return
    conn = open_database(":memory:")
    yield DatabaseSweepLock(conn, "scheduler-a", clock), DatabaseSweepLock(conn, "scheduler-b", clock)
    conn.close()


class TestSweepLock:
    def test_single_holder(self, pair):
        a, b = pair
        assert a.acquire(SWEEP_LOCK_NAME, 300) is True
        assert b.acquire(SWEEP_LOCK_NAME, 300) is False
        assert b.holder() == "scheduler-a"
        assert b.is_locked()

    def test_only_holder_releases(self, pair):
        a, b = pair
        a.acquire()
        assert b.release() is False
        assert a.release() is True
        assert a.holder() is None
        assert b.acquire() is True

    def test_expired_lease_is_taken_over(self, pair, clock):
        a, b = pair
        a.acquire(ttl_seconds=60)
        clock.advance(seconds=59)
        assert b.acquire(ttl_seconds=60) is False
        clock.advance(seconds=1)
        assert a.holder() is None
        assert b.acquire(ttl_seconds=60) is True
        assert a.holder() == "scheduler-b"

    def test_names_are_independent(self, pair):
        a, b = pair
        a.acquire("sweep-1")
        assert b.acquire("sweep-2") is True

    def test_random_instance_id(self):
        assert MemorySweepLock().instance_id != MemorySweepLock().instance_id
