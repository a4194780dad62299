"""SQLite-backed stores.

JSON payloads (nodes, edges, context, snapshots) are stored as text and
timestamps as fixed-width ISO-8601 UTC strings, so ``<=`` comparisons in SQL
order correctly. Every statement sequence that reads ``rowcount`` or fetches
after executing holds the connection lock; the scheduler thread and request
threads share one :class:`~flowspine.core.connection.SqliteConnection`.

Example::

    conn = open_database("flowspine.db")
    stores = create_sqlite_stores(conn)
    stores.runs.get(run_id)
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from flowspine.core.connection import SqliteConnection
from flowspine.engine.models import (
    CompensationStatus,
    DeadLetterEntry,
    Edge,
    Node,
    RunStatus,
    Signal,
    StepLogEntry,
    StepStatus,
    TriggerType,
    WorkflowDefinition,
    WorkflowRun,
    parse_dt,
)
from flowspine.engine.retry import RetryPolicy
from flowspine.store.base import (
    DeadLetterStore,
    DefinitionStore,
    RunStore,
    SignalStore,
    StepLogStore,
    Stores,
)


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _loads(value: str | None, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    return json.loads(value)


class SqliteRepository:
    """Shared helpers: locked execute, dict rows, single-row insert."""

    TABLE = ""

    def __init__(self, conn: SqliteConnection) -> None:
        self.conn = conn

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.conn.lock:
            cursor = self.conn.execute(sql, params)
            return [dict(row) for row in cursor.fetchall()]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def write(self, sql: str, params: tuple = ()) -> int:
        """Execute and commit a write; return the affected row count."""
        with self.conn.lock:
            cursor = self.conn.execute(sql, params)
            affected = cursor.rowcount
            self.conn.commit()
            return affected

    def insert(self, data: dict[str, Any], *, or_ignore: bool = False) -> int:
        columns = list(data)
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        sql = (
            f"{verb} INTO {self.TABLE} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        return self.write(sql, tuple(data.values()))

    def scalar(self, sql: str, params: tuple = ()) -> Any:
        with self.conn.lock:
            row = self.conn.execute(sql, params).fetchone()
            return row[0] if row else None


# =============================================================================
# Definitions
# =============================================================================


class SqliteDefinitionStore(SqliteRepository, DefinitionStore):
    TABLE = "workflow_definitions"

    def save(self, definition: WorkflowDefinition) -> None:
        row = {
            "id": definition.id,
            "name": definition.name,
            "description": definition.description,
            "trigger_type": definition.trigger_type.value,
            "nodes": _dumps([n.to_dict() for n in definition.nodes]),
            "edges": _dumps([e.to_dict() for e in definition.edges]),
            "retry_policy": _dumps(definition.retry_policy.to_dict()) if definition.retry_policy else None,
            "enabled": 1 if definition.enabled else 0,
            "run_count": definition.run_count,
            "success_count": definition.success_count,
            "failure_count": definition.failure_count,
            "last_run_at": _ts(definition.last_run_at),
            "created_at": _ts(definition.created_at),
        }
        columns = list(row)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
        self.write(
            f"INSERT INTO {self.TABLE} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            tuple(row.values()),
        )

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (workflow_id,))
        return self._row_to_definition(row) if row else None

    def list(self, *, limit: int = 50, offset: int = 0) -> list[WorkflowDefinition]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} ORDER BY name ASC, id ASC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [self._row_to_definition(r) for r in rows]

    def count(self) -> int:
        return self.scalar(f"SELECT COUNT(*) FROM {self.TABLE}") or 0

    def record_outcome(self, workflow_id: str, *, success: bool, at: datetime) -> None:
        if success:
            sql = (
                f"UPDATE {self.TABLE} SET run_count = run_count + 1, "
                "success_count = success_count + 1, last_run_at = ? WHERE id = ?"
            )
            self.write(sql, (_ts(at), workflow_id))
        else:
            sql = (
                f"UPDATE {self.TABLE} SET run_count = run_count + 1, "
                "failure_count = failure_count + 1 WHERE id = ?"
            )
            self.write(sql, (workflow_id,))

    @staticmethod
    def _row_to_definition(row: dict[str, Any]) -> WorkflowDefinition:
        policy = _loads(row["retry_policy"])
        return WorkflowDefinition(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            trigger_type=TriggerType(row["trigger_type"]),
            nodes=[Node.from_dict(n) for n in _loads(row["nodes"], [])],
            edges=[Edge.from_dict(e) for e in _loads(row["edges"], [])],
            retry_policy=RetryPolicy.from_dict(policy) if policy else None,
            enabled=bool(row["enabled"]),
            run_count=row["run_count"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            last_run_at=parse_dt(row["last_run_at"]),
            created_at=parse_dt(row["created_at"]),
        )


# =============================================================================
# Runs
# =============================================================================


class SqliteRunStore(SqliteRepository, RunStore):
    TABLE = "workflow_runs"

    def create(self, run: WorkflowRun) -> None:
        self.insert(self._run_to_row(run))

    def get(self, run_id: str) -> WorkflowRun | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (run_id,))
        return self._row_to_run(row) if row else None

    def update(self, run: WorkflowRun, *, expected_status: RunStatus | None = None) -> bool:
        row = self._run_to_row(run)
        for immutable in ("id", "workflow_id", "trigger_type", "started_at"):
            row.pop(immutable)
        sets = ", ".join(f"{c} = ?" for c in row)
        sql = f"UPDATE {self.TABLE} SET {sets} WHERE id = ?"
        params: list[Any] = [*row.values(), run.id]
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)
        return self.write(sql, tuple(params)) > 0

    def claim(self, run_id: str, expected_status: RunStatus) -> WorkflowRun | None:
        with self.conn.lock:
            affected = self.write(
                f"UPDATE {self.TABLE} SET status = ?, next_retry_at = NULL, awaiting_signal_type = NULL "
                "WHERE id = ? AND status = ?",
                (RunStatus.RUNNING.value, run_id, expected_status.value),
            )
            if not affected:
                return None
            return self.get(run_id)

    def list_due(self, status: RunStatus, now: datetime, limit: int) -> list[WorkflowRun]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} "
            "WHERE status = ? AND next_retry_at IS NOT NULL AND next_retry_at <= ? "
            "ORDER BY next_retry_at ASC LIMIT ?",
            (status.value, _ts(now), limit),
        )
        return [self._row_to_run(r) for r in rows]

    @staticmethod
    def _where(workflow_id: str | None, status: RunStatus | None) -> tuple[str, tuple]:
        parts: list[str] = []
        params: list[Any] = []
        if workflow_id is not None:
            parts.append("workflow_id = ?")
            params.append(workflow_id)
        if status is not None:
            parts.append("status = ?")
            params.append(status.value)
        return (" AND ".join(parts) or "1=1"), tuple(params)

    def list(
        self,
        *,
        workflow_id: str | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowRun]:
        where, params = self._where(workflow_id, status)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} ORDER BY started_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [self._row_to_run(r) for r in rows]

    def count(self, *, workflow_id: str | None = None, status: RunStatus | None = None) -> int:
        where, params = self._where(workflow_id, status)
        return self.scalar(f"SELECT COUNT(*) FROM {self.TABLE} WHERE {where}", params) or 0

    @staticmethod
    def _run_to_row(run: WorkflowRun) -> dict[str, Any]:
        return {
            "id": run.id,
            "workflow_id": run.workflow_id,
            "trigger_type": run.trigger_type.value,
            "trigger_data": _dumps(run.trigger_data),
            "status": run.status.value,
            "context": _dumps(run.context),
            "current_node_id": run.current_node_id,
            "retry_count": run.retry_count,
            "max_retries": run.max_retries,
            "next_retry_at": _ts(run.next_retry_at),
            "awaiting_signal_type": run.awaiting_signal_type,
            "deadline_at": _ts(run.deadline_at),
            "compensations": _dumps(run.compensations),
            "compensation_status": run.compensation_status.value,
            "started_at": _ts(run.started_at),
            "completed_at": _ts(run.completed_at),
            "duration_ms": run.duration_ms,
            "error_message": run.error_message,
        }

    @staticmethod
    def _row_to_run(row: dict[str, Any]) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            trigger_type=TriggerType(row["trigger_type"]),
            trigger_data=_loads(row["trigger_data"], {}),
            status=RunStatus(row["status"]),
            context=_loads(row["context"], {}),
            current_node_id=row["current_node_id"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            next_retry_at=parse_dt(row["next_retry_at"]),
            awaiting_signal_type=row["awaiting_signal_type"],
            deadline_at=parse_dt(row["deadline_at"]),
            compensations=_loads(row["compensations"], []),
            compensation_status=CompensationStatus(row["compensation_status"]),
            started_at=parse_dt(row["started_at"]),
            completed_at=parse_dt(row["completed_at"]),
            duration_ms=row["duration_ms"],
            error_message=row["error_message"],
        )


# =============================================================================
# Step logs
# =============================================================================


class SqliteStepLogStore(SqliteRepository, StepLogStore):
    TABLE = "workflow_step_logs"

    def append(self, entry: StepLogEntry) -> None:
        with self.conn.lock:
            seq = self.scalar(
                f"SELECT COALESCE(MAX(seq), 0) + 1 FROM {self.TABLE} WHERE run_id = ?",
                (entry.run_id,),
            )
            self.insert({
                "id": entry.id,
                "seq": seq,
                "run_id": entry.run_id,
                "node_id": entry.node_id,
                "node_type": entry.node_type,
                "node_name": entry.node_name,
                "attempt": entry.attempt,
                "status": entry.status.value,
                "input_snapshot": _dumps(entry.input_snapshot),
                "output_snapshot": _dumps(entry.output_snapshot),
                "error_message": entry.error_message,
                "started_at": _ts(entry.started_at),
                "completed_at": _ts(entry.completed_at),
                "duration_ms": entry.duration_ms,
            })

    def update(self, entry: StepLogEntry) -> None:
        affected = self.write(
            f"UPDATE {self.TABLE} SET status = ?, output_snapshot = ?, error_message = ?, "
            "completed_at = ?, duration_ms = ? WHERE id = ?",
            (
                entry.status.value,
                _dumps(entry.output_snapshot),
                entry.error_message,
                _ts(entry.completed_at),
                entry.duration_ms,
                entry.id,
            ),
        )
        if not affected:
            raise KeyError(f"Step log '{entry.id}' not found")

    def list_for_run(self, run_id: str) -> list[StepLogEntry]:
        rows = self.query(f"SELECT * FROM {self.TABLE} WHERE run_id = ? ORDER BY seq ASC", (run_id,))
        return [self._row_to_entry(r) for r in rows]

    def find_completed(self, run_id: str, node_id: str) -> StepLogEntry | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE run_id = ? AND node_id = ? AND status = ? "
            "ORDER BY seq DESC LIMIT 1",
            (run_id, node_id, StepStatus.COMPLETED.value),
        )
        return self._row_to_entry(row) if row else None

    def count_attempts(self, run_id: str, node_id: str) -> int:
        return self.scalar(
            f"SELECT COUNT(*) FROM {self.TABLE} WHERE run_id = ? AND node_id = ?",
            (run_id, node_id),
        ) or 0

    @staticmethod
    def _row_to_entry(row: dict[str, Any]) -> StepLogEntry:
        return StepLogEntry(
            id=row["id"],
            run_id=row["run_id"],
            node_id=row["node_id"],
            node_type=row["node_type"],
            node_name=row["node_name"],
            status=StepStatus(row["status"]),
            attempt=row["attempt"],
            input_snapshot=_loads(row["input_snapshot"]),
            output_snapshot=_loads(row["output_snapshot"]),
            error_message=row["error_message"],
            started_at=parse_dt(row["started_at"]),
            completed_at=parse_dt(row["completed_at"]),
            duration_ms=row["duration_ms"],
        )


# =============================================================================
# Signals
# =============================================================================


class SqliteSignalStore(SqliteRepository, SignalStore):
    TABLE = "workflow_signals"

    def create(self, signal: Signal) -> None:
        self.insert({
            "id": signal.id,
            "run_id": signal.run_id,
            "signal_type": signal.signal_type,
            "signal_data": _dumps(signal.signal_data),
            "source": signal.source,
            "created_at": _ts(signal.created_at),
            "processed_at": _ts(signal.processed_at),
        })

    def get(self, signal_id: str) -> Signal | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (signal_id,))
        return self._row_to_signal(row) if row else None

    def list_unprocessed(self, limit: int) -> list[Signal]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE processed_at IS NULL ORDER BY created_at ASC LIMIT ?",
            (limit,),
        )
        return [self._row_to_signal(r) for r in rows]

    def list_for_run(self, run_id: str) -> list[Signal]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE run_id = ? ORDER BY created_at ASC", (run_id,)
        )
        return [self._row_to_signal(r) for r in rows]

    def mark_processed(self, signal_id: str, at: datetime) -> bool:
        return self.write(
            f"UPDATE {self.TABLE} SET processed_at = ? WHERE id = ? AND processed_at IS NULL",
            (_ts(at), signal_id),
        ) > 0

    @staticmethod
    def _row_to_signal(row: dict[str, Any]) -> Signal:
        return Signal(
            id=row["id"],
            run_id=row["run_id"],
            signal_type=row["signal_type"],
            signal_data=_loads(row["signal_data"], {}),
            source=row["source"],
            created_at=parse_dt(row["created_at"]),
            processed_at=parse_dt(row["processed_at"]),
        )


# =============================================================================
# Dead letters
# =============================================================================


class SqliteDeadLetterStore(SqliteRepository, DeadLetterStore):
    TABLE = "workflow_dead_letters"

    def add(self, entry: DeadLetterEntry) -> bool:
        # Unique index on run_id keeps one entry per run.
        return self.insert(
            {
                "id": entry.id,
                "run_id": entry.run_id,
                "workflow_id": entry.workflow_id,
                "workflow_name": entry.workflow_name,
                "failure_reason": entry.failure_reason,
                "last_error": entry.last_error,
                "failed_at_node": entry.failed_at_node,
                "context_snapshot": _dumps(entry.context_snapshot),
                "trigger_data": _dumps(entry.trigger_data),
                "retry_count": entry.retry_count,
                "created_at": _ts(entry.created_at),
                "resolved_at": _ts(entry.resolved_at),
                "resolution_action": entry.resolution_action,
                "requeued_run_id": entry.requeued_run_id,
            },
            or_ignore=True,
        ) > 0

    def get(self, entry_id: str) -> DeadLetterEntry | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (entry_id,))
        return self._row_to_entry(row) if row else None

    def get_for_run(self, run_id: str) -> DeadLetterEntry | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE run_id = ?", (run_id,))
        return self._row_to_entry(row) if row else None

    @staticmethod
    def _where(include_resolved: bool, workflow_id: str | None) -> tuple[str, tuple]:
        parts: list[str] = []
        params: list[Any] = []
        if not include_resolved:
            parts.append("resolved_at IS NULL")
        if workflow_id is not None:
            parts.append("workflow_id = ?")
            params.append(workflow_id)
        return (" AND ".join(parts) or "1=1"), tuple(params)

    def list(
        self,
        *,
        include_resolved: bool = False,
        workflow_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeadLetterEntry]:
        where, params = self._where(include_resolved, workflow_id)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [self._row_to_entry(r) for r in rows]

    def count(self, *, include_resolved: bool = False, workflow_id: str | None = None) -> int:
        where, params = self._where(include_resolved, workflow_id)
        return self.scalar(f"SELECT COUNT(*) FROM {self.TABLE} WHERE {where}", params) or 0

    def resolve(
        self,
        entry_id: str,
        *,
        action: str,
        at: datetime,
        requeued_run_id: str | None = None,
    ) -> bool:
        return self.write(
            f"UPDATE {self.TABLE} SET resolved_at = ?, resolution_action = ?, requeued_run_id = ? "
            "WHERE id = ? AND resolved_at IS NULL",
            (_ts(at), action, requeued_run_id, entry_id),
        ) > 0

    @staticmethod
    def _row_to_entry(row: dict[str, Any]) -> DeadLetterEntry:
        return DeadLetterEntry(
            id=row["id"],
            run_id=row["run_id"],
            workflow_id=row["workflow_id"],
            workflow_name=row["workflow_name"],
            failure_reason=row["failure_reason"],
            last_error=row["last_error"],
            failed_at_node=row["failed_at_node"],
            context_snapshot=_loads(row["context_snapshot"], {}),
            trigger_data=_loads(row["trigger_data"], {}),
            retry_count=row["retry_count"],
            created_at=parse_dt(row["created_at"]),
            resolved_at=parse_dt(row["resolved_at"]),
            resolution_action=row["resolution_action"],
            requeued_run_id=row["requeued_run_id"],
        )


def create_sqlite_stores(conn: SqliteConnection) -> Stores:
    """Build a store bundle over one shared connection."""
    return Stores(
        definitions=SqliteDefinitionStore(conn),
        runs=SqliteRunStore(conn),
        step_logs=SqliteStepLogStore(conn),
        signals=SqliteSignalStore(conn),
        dead_letters=SqliteDeadLetterStore(conn),
    )
