"""Workflow domain models.

Defines the core data structures shared by the Executor, Scheduler, stores
and outer surfaces:

- WorkflowDefinition: immutable DAG of nodes and edges plus run counters
- WorkflowRun: one execution attempt with status, context, and scheduling
- StepLogEntry: append-only record of one node execution attempt
- Signal: external event addressed to a waiting run
- DeadLetterEntry: terminal failure record for manual replay

Valid run status graph::

    running         → completed | awaiting_timer | awaiting_signal
                      | retrying | failed | cancelled
    awaiting_timer  → running | cancelled
    retrying        → running | failed | cancelled
    awaiting_signal → running | cancelled
    completed | failed | cancelled → (terminal)
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from flowspine.core.errors import DefinitionError, InvalidTransitionError

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_dt(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if value is None or value == "":
        return None
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


# =============================================================================
# Enums
# =============================================================================


class TriggerType(str, Enum):
    """How runs of a workflow are started."""

    MANUAL = "manual"
    EVENT = "event"
    SCHEDULE = "schedule"


class RunStatus(str, Enum):
    """Status of a workflow run.

    Transitions are enforced via ``RUN_VALID_TRANSITIONS``; use
    :func:`validate_run_transition` before changing status.
    """

    RUNNING = "running"
    AWAITING_TIMER = "awaiting_timer"
    AWAITING_SIGNAL = "awaiting_signal"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_resumable(self) -> bool:
        return self in RESUMABLE_STATUSES


TERMINAL_STATUSES: frozenset[RunStatus] = frozenset({
    RunStatus.COMPLETED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
})

RESUMABLE_STATUSES: frozenset[RunStatus] = frozenset({
    RunStatus.RETRYING,
    RunStatus.AWAITING_TIMER,
    RunStatus.AWAITING_SIGNAL,
})

RUN_VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.RUNNING: frozenset({
        RunStatus.COMPLETED,
        RunStatus.AWAITING_TIMER,
        RunStatus.AWAITING_SIGNAL,
        RunStatus.RETRYING,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    }),
    RunStatus.AWAITING_TIMER: frozenset({
        RunStatus.RUNNING,
        RunStatus.CANCELLED,
    }),
    RunStatus.RETRYING: frozenset({
        RunStatus.RUNNING,
        RunStatus.FAILED,  # scheduler safety net
        RunStatus.CANCELLED,
    }),
    RunStatus.AWAITING_SIGNAL: frozenset({
        RunStatus.RUNNING,
        RunStatus.CANCELLED,
    }),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}


def validate_run_transition(current: RunStatus, target: RunStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal.

    Example:
        >>> validate_run_transition(RunStatus.RUNNING, RunStatus.COMPLETED)
        >>> validate_run_transition(RunStatus.COMPLETED, RunStatus.RUNNING)
        InvalidTransitionError: Invalid RunStatus transition: completed → running
    """
    allowed = RUN_VALID_TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransitionError(current.value, target.value)


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CompensationStatus(str, Enum):
    NONE = "none"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"


class NodeType:
    """Built-in node types handled by the Executor itself.

    Any other type string is dispatched to a registered StepExecutor.
    """

    TRIGGER = "trigger"
    DELAY = "delay"
    CONDITION = "condition"
    WAIT_FOR_SIGNAL = "wait_for_signal"

    ALIASES = {"timer": DELAY, "await_signal": WAIT_FOR_SIGNAL}
    BUILTIN = frozenset({TRIGGER, DELAY, CONDITION, WAIT_FOR_SIGNAL})

    @classmethod
    def canonical(cls, node_type: str) -> str:
        return cls.ALIASES.get(node_type, node_type)


# =============================================================================
# Definition
# =============================================================================


@dataclass(frozen=True)
class Node:
    """A typed step in a workflow definition.

    Attributes:
        id: Unique id within the definition
        type: Built-in type or a StepExecutor key (``send_email``, ``webhook``...)
        name: Human-readable label
        config: Type-specific configuration
        compensation: Optional StepExecutor type that undoes this node
        timeout_seconds: Optional per-node override of the step deadline
    """

    id: str
    type: str
    name: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    compensation: str | None = None
    timeout_seconds: float | None = None

    @property
    def kind(self) -> str:
        return NodeType.canonical(self.type)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "config": dict(self.config),
        }
        if self.compensation:
            data["compensation"] = self.compensation
        if self.timeout_seconds is not None:
            data["timeout_seconds"] = self.timeout_seconds
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        return cls(
            id=data["id"],
            type=data["type"],
            name=data.get("name") or data["id"],
            config=dict(data.get("config") or {}),
            compensation=data.get("compensation"),
            timeout_seconds=data.get("timeout_seconds"),
        )


@dataclass(frozen=True)
class Edge:
    """Directed edge; ``condition`` of ``None`` means unconditional."""

    id: str
    source_node_id: str
    target_node_id: str
    condition: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_node_id": self.source_node_id,
            "target_node_id": self.target_node_id,
            "condition": self.condition,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        source = data.get("source_node_id") or data.get("source")
        target = data.get("target_node_id") or data.get("target")
        return cls(
            id=data.get("id") or f"{source}->{target}",
            source_node_id=source,
            target_node_id=target,
            condition=data.get("condition"),
        )


@dataclass
class WorkflowDefinition:
    """Immutable DAG definition plus counters mutated after each run finishes.

    Example:
        >>> wf = WorkflowDefinition.create(
        ...     name="deposit-followup",
        ...     nodes=[Node("t", "trigger"), Node("mail", "send_email")],
        ...     edges=[Edge("e1", "t", "mail")],
        ... )
        >>> wf.validate()
    """

    id: str
    name: str
    nodes: list[Node]
    edges: list[Edge]
    trigger_type: TriggerType = TriggerType.MANUAL
    description: str | None = None
    retry_policy: Any = None  # RetryPolicy | None; typed loosely to avoid an import cycle
    enabled: bool = True
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_run_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        name: str,
        nodes: list[Node],
        edges: list[Edge],
        *,
        trigger_type: TriggerType = TriggerType.MANUAL,
        workflow_id: str | None = None,
        **kwargs: Any,
    ) -> WorkflowDefinition:
        return cls(
            id=workflow_id or new_id(),
            name=name,
            nodes=list(nodes),
            edges=list(edges),
            trigger_type=trigger_type,
            **kwargs,
        )

    # -- graph helpers -----------------------------------------------------

    def get_node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise DefinitionError(f"Node '{node_id}' not found in workflow '{self.name}'")

    def has_node(self, node_id: str) -> bool:
        return any(node.id == node_id for node in self.nodes)

    def trigger_node(self) -> Node:
        triggers = [n for n in self.nodes if n.kind == NodeType.TRIGGER]
        if len(triggers) != 1:
            raise DefinitionError(
                f"Workflow '{self.name}' must have exactly one trigger node, found {len(triggers)}"
            )
        return triggers[0]

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        """Outgoing edges in declaration order."""
        return [e for e in self.edges if e.source_node_id == node_id]

    def traversal_order(self) -> list[Node]:
        """Nodes reachable from the trigger, breadth-first in edge order."""
        start = self.trigger_node()
        seen = {start.id}
        order = [start]
        queue = [start.id]
        while queue:
            current = queue.pop(0)
            for edge in self.outgoing_edges(current):
                if edge.target_node_id not in seen and self.has_node(edge.target_node_id):
                    seen.add(edge.target_node_id)
                    order.append(self.get_node(edge.target_node_id))
                    queue.append(edge.target_node_id)
        return order

    def validate(self) -> None:
        """Check DAG invariants; raise :class:`DefinitionError` on the first violation.

        - node ids are unique
        - exactly one trigger node
        - every edge references existing nodes
        - every non-trigger node is reachable from the trigger
        - the graph has no cycles
        """
        ids = [n.id for n in self.nodes]
        if len(ids) != len(set(ids)):
            raise DefinitionError(f"Workflow '{self.name}' has duplicate node ids")

        trigger = self.trigger_node()

        for edge in self.edges:
            for endpoint in (edge.source_node_id, edge.target_node_id):
                if not self.has_node(endpoint):
                    raise DefinitionError(
                        f"Edge '{edge.id}' references missing node '{endpoint}'"
                    )
            if edge.target_node_id == trigger.id:
                raise DefinitionError(f"Edge '{edge.id}' points back at the trigger node")

        reachable = {n.id for n in self.traversal_order()}
        unreachable = [n.id for n in self.nodes if n.id not in reachable]
        if unreachable:
            raise DefinitionError(
                f"Nodes not reachable from trigger: {', '.join(sorted(unreachable))}"
            )

        self._check_acyclic()

    def _check_acyclic(self) -> None:
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(node_id: str) -> None:
            if node_id in done:
                return
            if node_id in visiting:
                raise DefinitionError(f"Workflow '{self.name}' contains a cycle at '{node_id}'")
            visiting.add(node_id)
            for edge in self.outgoing_edges(node_id):
                visit(edge.target_node_id)
            visiting.discard(node_id)
            done.add(node_id)

        for node in self.nodes:
            visit(node.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "trigger_type": self.trigger_type.value,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "retry_policy": self.retry_policy.to_dict() if self.retry_policy else None,
            "enabled": self.enabled,
            "run_count": self.run_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_run_at": _iso(self.last_run_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDefinition:
        from flowspine.engine.retry import RetryPolicy

        policy = data.get("retry_policy")
        return cls(
            id=data.get("id") or new_id(),
            name=data["name"],
            description=data.get("description"),
            trigger_type=TriggerType(data.get("trigger_type") or TriggerType.MANUAL.value),
            nodes=[Node.from_dict(n) for n in data.get("nodes", [])],
            edges=[Edge.from_dict(e) for e in data.get("edges", [])],
            retry_policy=RetryPolicy.from_dict(policy) if policy else None,
            enabled=bool(data.get("enabled", True)),
            run_count=data.get("run_count", 0),
            success_count=data.get("success_count", 0),
            failure_count=data.get("failure_count", 0),
            last_run_at=parse_dt(data.get("last_run_at")),
            created_at=parse_dt(data.get("created_at")) or utcnow(),
        )


# =============================================================================
# Run
# =============================================================================


@dataclass
class WorkflowRun:
    """One execution attempt of a workflow definition.

    ``context`` maps node id → that node's output, seeded with
    ``{"trigger": trigger_data}``; it only ever grows.
    """

    id: str
    workflow_id: str
    trigger_type: TriggerType
    trigger_data: dict[str, Any]
    status: RunStatus = RunStatus.RUNNING
    context: dict[str, Any] = field(default_factory=dict)
    current_node_id: str | None = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: datetime | None = None
    awaiting_signal_type: str | None = None
    deadline_at: datetime | None = None
    compensations: list[dict[str, Any]] = field(default_factory=list)
    compensation_status: CompensationStatus = CompensationStatus.NONE
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None

    @classmethod
    def create(
        cls,
        definition: WorkflowDefinition,
        trigger_data: dict[str, Any] | None = None,
        *,
        max_retries: int = 3,
        deadline_at: datetime | None = None,
        now: datetime | None = None,
        context: dict[str, Any] | None = None,
    ) -> WorkflowRun:
        trigger_data = dict(trigger_data or {})
        seeded = {"trigger": trigger_data}
        if context:
            seeded = {**context, "trigger": trigger_data}
        return cls(
            id=new_id(),
            workflow_id=definition.id,
            trigger_type=definition.trigger_type,
            trigger_data=trigger_data,
            context=seeded,
            max_retries=max_retries,
            deadline_at=deadline_at,
            started_at=now or utcnow(),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition_to(self, target: RunStatus) -> None:
        """Validate and apply a status change."""
        validate_run_transition(self.status, target)
        self.status = target

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "trigger_type": self.trigger_type.value,
            "trigger_data": self.trigger_data,
            "status": self.status.value,
            "context": self.context,
            "current_node_id": self.current_node_id,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": _iso(self.next_retry_at),
            "awaiting_signal_type": self.awaiting_signal_type,
            "deadline_at": _iso(self.deadline_at),
            "compensations": self.compensations,
            "compensation_status": self.compensation_status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }


# =============================================================================
# Audit / signalling records
# =============================================================================


@dataclass
class StepLogEntry:
    """One node execution attempt. A retried node gets a second row."""

    id: str
    run_id: str
    node_id: str
    node_type: str
    node_name: str
    status: StepStatus
    attempt: int = 1
    input_snapshot: dict[str, Any] | None = None
    output_snapshot: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "node_type": self.node_type,
            "node_name": self.node_name,
            "status": self.status.value,
            "attempt": self.attempt,
            "input_snapshot": self.input_snapshot,
            "output_snapshot": self.output_snapshot,
            "error_message": self.error_message,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
        }


@dataclass
class Signal:
    """External event addressed to a run; consumed at most once."""

    id: str
    run_id: str
    signal_type: str
    signal_data: dict[str, Any] = field(default_factory=dict)
    source: str = "manual"
    created_at: datetime = field(default_factory=utcnow)
    processed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "signal_type": self.signal_type,
            "signal_data": self.signal_data,
            "source": self.source,
            "created_at": _iso(self.created_at),
            "processed_at": _iso(self.processed_at),
        }


@dataclass
class DeadLetterEntry:
    """Write-once failure record; resolution fields are the only later update."""

    id: str
    run_id: str
    workflow_id: str
    failure_reason: str
    last_error: str | None
    context_snapshot: dict[str, Any]
    created_at: datetime = field(default_factory=utcnow)
    workflow_name: str | None = None
    failed_at_node: str | None = None
    trigger_data: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    resolved_at: datetime | None = None
    resolution_action: str | None = None
    requeued_run_id: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "failure_reason": self.failure_reason,
            "last_error": self.last_error,
            "failed_at_node": self.failed_at_node,
            "context_snapshot": self.context_snapshot,
            "trigger_data": self.trigger_data,
            "retry_count": self.retry_count,
            "created_at": _iso(self.created_at),
            "resolved_at": _iso(self.resolved_at),
            "resolution_action": self.resolution_action,
            "requeued_run_id": self.requeued_run_id,
        }
