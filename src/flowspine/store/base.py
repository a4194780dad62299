"""Abstract persistence interfaces for the engine.

The Executor and Scheduler talk only to these ABCs. Two backends ship:
:mod:`flowspine.store.memory` (tests, ``:memory:`` demos) and
:mod:`flowspine.store.sqlite` (durable).

Concurrency contract:
    - ``RunStore.update(run, expected_status=...)`` and ``RunStore.claim``
      are compare-and-set on the persisted status; they return ``False`` /
      ``None`` when another actor changed the status first.
    - ``SignalStore.mark_processed`` only succeeds for an unprocessed signal,
      so each signal is consumed by exactly one caller.
    - ``DeadLetterStore.add`` writes at most one entry per run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from flowspine.engine.models import (
    DeadLetterEntry,
    RunStatus,
    Signal,
    StepLogEntry,
    StepStatus,
    WorkflowDefinition,
    WorkflowRun,
)


class DefinitionStore(ABC):
    @abstractmethod
    def save(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a definition."""

    @abstractmethod
    def get(self, workflow_id: str) -> WorkflowDefinition | None: ...

    @abstractmethod
    def list(self, *, limit: int = 50, offset: int = 0) -> list[WorkflowDefinition]: ...

    @abstractmethod
    def count(self) -> int: ...

    @abstractmethod
    def record_outcome(self, workflow_id: str, *, success: bool, at: datetime) -> None:
        """Atomically bump run_count and success_count or failure_count."""


class RunStore(ABC):
    @abstractmethod
    def create(self, run: WorkflowRun) -> None: ...

    @abstractmethod
    def get(self, run_id: str) -> WorkflowRun | None: ...

    @abstractmethod
    def update(self, run: WorkflowRun, *, expected_status: RunStatus | None = None) -> bool:
        """Persist every mutable field of ``run``.

        With ``expected_status`` the write only happens if the stored status
        still equals it. Returns whether a row was written.
        """

    @abstractmethod
    def claim(self, run_id: str, expected_status: RunStatus) -> WorkflowRun | None:
        """Move ``expected_status`` → running, clearing wake-up fields.

        Returns the claimed run, or ``None`` if the status had already moved on.
        """

    @abstractmethod
    def list_due(self, status: RunStatus, now: datetime, limit: int) -> list[WorkflowRun]:
        """Runs in ``status`` whose ``next_retry_at`` is at or before ``now``, oldest first."""

    @abstractmethod
    def list(
        self,
        *,
        workflow_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowRun]:
        """Most recently started first."""

    @abstractmethod
    def count(self, *, workflow_id: str | None = None, status: RunStatus | None = None) -> int: ...


class StepLogStore(ABC):
    @abstractmethod
    def append(self, entry: StepLogEntry) -> None: ...

    @abstractmethod
    def update(self, entry: StepLogEntry) -> None:
        """Record the outcome of an appended entry (status, output, error, timing)."""

    @abstractmethod
    def list_for_run(self, run_id: str) -> list[StepLogEntry]:
        """Entries in append order."""

    def find_completed(self, run_id: str, node_id: str) -> StepLogEntry | None:
        for entry in reversed(self.list_for_run(run_id)):
            if entry.node_id == node_id and entry.status == StepStatus.COMPLETED:
                return entry
        return None

    def count_attempts(self, run_id: str, node_id: str) -> int:
        return sum(1 for entry in self.list_for_run(run_id) if entry.node_id == node_id)


class SignalStore(ABC):
    @abstractmethod
    def create(self, signal: Signal) -> None: ...

    @abstractmethod
    def get(self, signal_id: str) -> Signal | None: ...

    @abstractmethod
    def list_unprocessed(self, limit: int) -> list[Signal]:
        """Oldest first."""

    @abstractmethod
    def list_for_run(self, run_id: str) -> list[Signal]: ...

    @abstractmethod
    def mark_processed(self, signal_id: str, at: datetime) -> bool:
        """Set processed_at if still unset. Returns whether this caller won."""


class DeadLetterStore(ABC):
    @abstractmethod
    def add(self, entry: DeadLetterEntry) -> bool:
        """Insert unless the run already has an entry. Returns whether inserted."""

    @abstractmethod
    def get(self, entry_id: str) -> DeadLetterEntry | None: ...

    @abstractmethod
    def get_for_run(self, run_id: str) -> DeadLetterEntry | None: ...

    @abstractmethod
    def list(
        self,
        *,
        include_resolved: bool = False,
        workflow_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeadLetterEntry]:
        """Newest first."""

    @abstractmethod
    def count(self, *, include_resolved: bool = False, workflow_id: str | None = None) -> int: ...

    @abstractmethod
    def resolve(
        self,
        entry_id: str,
        *,
        action: str,
        at: datetime,
        requeued_run_id: str | None = None,
    ) -> bool:
        """Mark an unresolved entry resolved. Returns ``False`` if already resolved."""


@dataclass
class Stores:
    """The five stores an engine instance works against."""

    definitions: DefinitionStore
    runs: RunStore
    step_logs: StepLogStore
    signals: SignalStore
    dead_letters: DeadLetterStore
