"""In-memory stores.

Thread-safe (one shared re-entrant lock) and copy-on-read/write, so callers
never alias stored objects: a run mutated by the Executor is only visible
to others once ``update`` succeeds, as with the SQLite backend.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime

from flowspine.engine.models import (
    DeadLetterEntry,
    RunStatus,
    Signal,
    StepLogEntry,
    WorkflowDefinition,
    WorkflowRun,
)
from flowspine.store.base import (
    DeadLetterStore,
    DefinitionStore,
    RunStore,
    SignalStore,
    StepLogStore,
    Stores,
)


def _page[T](items: list[T], limit: int, offset: int) -> list[T]:
    return items[offset : offset + limit]


class MemoryDefinitionStore(DefinitionStore):
    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._items: dict[str, WorkflowDefinition] = {}

    def save(self, definition: WorkflowDefinition) -> None:
        with self._lock:
            self._items[definition.id] = copy.deepcopy(definition)

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        with self._lock:
            found = self._items.get(workflow_id)
            return copy.deepcopy(found) if found else None

    def list(self, *, limit: int = 50, offset: int = 0) -> list[WorkflowDefinition]:
        with self._lock:
            ordered = sorted(self._items.values(), key=lambda d: (d.name, d.id))
            return [copy.deepcopy(d) for d in _page(ordered, limit, offset)]

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def record_outcome(self, workflow_id: str, *, success: bool, at: datetime) -> None:
        with self._lock:
            definition = self._items.get(workflow_id)
            if definition is None:
                return
            definition.run_count += 1
            if success:
                definition.success_count += 1
                definition.last_run_at = at
            else:
                definition.failure_count += 1


class MemoryRunStore(RunStore):
    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._items: dict[str, WorkflowRun] = {}

    def create(self, run: WorkflowRun) -> None:
        with self._lock:
            if run.id in self._items:
                raise ValueError(f"Run '{run.id}' already exists")
            self._items[run.id] = copy.deepcopy(run)

    def get(self, run_id: str) -> WorkflowRun | None:
        with self._lock:
            found = self._items.get(run_id)
            return copy.deepcopy(found) if found else None

    def update(self, run: WorkflowRun, *, expected_status: RunStatus | None = None) -> bool:
        with self._lock:
            stored = self._items.get(run.id)
            if stored is None:
                return False
            if expected_status is not None and stored.status != expected_status:
                return False
            self._items[run.id] = copy.deepcopy(run)
            return True

    def claim(self, run_id: str, expected_status: RunStatus) -> WorkflowRun | None:
        with self._lock:
            stored = self._items.get(run_id)
            if stored is None or stored.status != expected_status:
                return None
            claimed = replace(
                stored,
                status=RunStatus.RUNNING,
                next_retry_at=None,
                awaiting_signal_type=None,
            )
            self._items[run_id] = claimed
            return copy.deepcopy(claimed)

    def list_due(self, status: RunStatus, now: datetime, limit: int) -> list[WorkflowRun]:
        with self._lock:
            due = [
                r for r in self._items.values()
                if r.status == status and r.next_retry_at is not None and r.next_retry_at <= now
            ]
            due.sort(key=lambda r: r.next_retry_at)
            return [copy.deepcopy(r) for r in due[:limit]]

    def _filtered(self, workflow_id: str | None, status: RunStatus | None) -> list[WorkflowRun]:
        return [
            r for r in self._items.values()
            if (workflow_id is None or r.workflow_id == workflow_id)
            and (status is None or r.status == status)
        ]

    def list(
        self,
        *,
        workflow_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowRun]:
        with self._lock:
            runs = sorted(self._filtered(workflow_id, status), key=lambda r: r.started_at, reverse=True)
            return [copy.deepcopy(r) for r in _page(runs, limit, offset)]

    def count(self, *, workflow_id: str | None = None, status: RunStatus | None = None) -> int:
        with self._lock:
            return len(self._filtered(workflow_id, status))


class MemoryStepLogStore(StepLogStore):
    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._items: list[StepLogEntry] = []

    def append(self, entry: StepLogEntry) -> None:
        with self._lock:
            self._items.append(copy.deepcopy(entry))

    def update(self, entry: StepLogEntry) -> None:
        with self._lock:
            for index, existing in enumerate(self._items):
                if existing.id == entry.id:
                    self._items[index] = copy.deepcopy(entry)
                    return
            raise KeyError(f"Step log '{entry.id}' not found")

    def list_for_run(self, run_id: str) -> list[StepLogEntry]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._items if e.run_id == run_id]


class MemorySignalStore(SignalStore):
    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._items: dict[str, Signal] = {}

    def create(self, signal: Signal) -> None:
        with self._lock:
            self._items[signal.id] = copy.deepcopy(signal)

    def get(self, signal_id: str) -> Signal | None:
        with self._lock:
            found = self._items.get(signal_id)
            return copy.deepcopy(found) if found else None

    def list_unprocessed(self, limit: int) -> list[Signal]:
        with self._lock:
            pending = [s for s in self._items.values() if s.processed_at is None]
            pending.sort(key=lambda s: s.created_at)
            return [copy.deepcopy(s) for s in pending[:limit]]

    def list_for_run(self, run_id: str) -> list[Signal]:
        with self._lock:
            found = [s for s in self._items.values() if s.run_id == run_id]
            found.sort(key=lambda s: s.created_at)
            return [copy.deepcopy(s) for s in found]

    def mark_processed(self, signal_id: str, at: datetime) -> bool:
        with self._lock:
            signal = self._items.get(signal_id)
            if signal is None or signal.processed_at is not None:
                return False
            signal.processed_at = at
            return True


class MemoryDeadLetterStore(DeadLetterStore):
    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._items: dict[str, DeadLetterEntry] = {}

    def add(self, entry: DeadLetterEntry) -> bool:
        with self._lock:
            if any(e.run_id == entry.run_id for e in self._items.values()):
                return False
            self._items[entry.id] = copy.deepcopy(entry)
            return True

    def get(self, entry_id: str) -> DeadLetterEntry | None:
        with self._lock:
            found = self._items.get(entry_id)
            return copy.deepcopy(found) if found else None

    def get_for_run(self, run_id: str) -> DeadLetterEntry | None:
        with self._lock:
            for entry in self._items.values():
                if entry.run_id == run_id:
                    return copy.deepcopy(entry)
            return None

    def _filtered(self, include_resolved: bool, workflow_id: str | None) -> list[DeadLetterEntry]:
        return [
            e for e in self._items.values()
            if (include_resolved or e.resolved_at is None)
            and (workflow_id is None or e.workflow_id == workflow_id)
        ]

    def list(
        self,
        *,
        include_resolved: bool = False,
        workflow_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeadLetterEntry]:
        with self._lock:
            entries = sorted(
                self._filtered(include_resolved, workflow_id), key=lambda e: e.created_at, reverse=True
            )
            return [copy.deepcopy(e) for e in _page(entries, limit, offset)]

    def count(self, *, include_resolved: bool = False, workflow_id: str | None = None) -> int:
        with self._lock:
            return len(self._filtered(include_resolved, workflow_id))

    def resolve(
        self,
        entry_id: str,
        *,
        action: str,
        at: datetime,
        requeued_run_id: str | None = None,
    ) -> bool:
        with self._lock:
            entry = self._items.get(entry_id)
            if entry is None or entry.resolved_at is not None:
                return False
            entry.resolved_at = at
            entry.resolution_action = action
            entry.requeued_run_id = requeued_run_id
            return True


def create_memory_stores() -> Stores:
    """Build a store bundle sharing one lock."""
    lock = threading.RLock()
    return Stores(
        definitions=MemoryDefinitionStore(lock),
        runs=MemoryRunStore(lock),
        step_logs=MemoryStepLogStore(lock),
        signals=MemorySignalStore(lock),
        dead_letters=MemoryDeadLetterStore(lock),
    )
