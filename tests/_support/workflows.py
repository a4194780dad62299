"""Fake clock, scripted StepExecutor, and workflow definition builders."""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from datetime import UTC, datetime, timedelta
from typing import Any

from flowspine.core.settings import FlowSettings
from flowspine.engine.models import Edge, Node, WorkflowDefinition


# ── Clock ────────────────────────────────────────────────────────────────


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


# ── Scripted StepExecutor ────────────────────────────────────────────────


class ScriptedStepExecutor:
    """StepExecutor whose results are queued per node type.

    Each queued outcome is either a dict (returned) or an exception
    (raised). When a queue is empty the default output is returned.
    """

    def __init__(self, default: dict[str, Any] | None = None) -> None:
        self.default = default if default is not None else {"ok": True}
        self.calls: list[tuple[str, dict[str, Any], dict[str, Any]]] = []
        self._outcomes: dict[str, deque[Any]] = defaultdict(deque)
        self._lock = threading.Lock()

    def script(self, node_type: str, *outcomes: Any) -> ScriptedStepExecutor:
        self._outcomes[node_type].extend(outcomes)
        return self

    def execute(self, node_type: str, config: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((node_type, config, context))
            queue = self._outcomes[node_type]
            outcome = queue.popleft() if queue else dict(self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def calls_for(self, node_type: str) -> list[tuple[str, dict[str, Any], dict[str, Any]]]:
        return [c for c in self.calls if c[0] == node_type]


STEP_TYPES = ("send_email", "update_status", "ai_decision", "webhook", "refund", "notify")


def make_settings(**overrides: Any) -> FlowSettings:
    """Deterministic settings: no jitter, inline step dispatch."""
    values: dict[str, Any] = {
        "database_path": ":memory:",
        "retry_jitter": 0.0,
        "retry_backoff": "exponential",
        "retry_base_delay_seconds": 1.0,
        "step_timeout_seconds": None,
    }
    values.update(overrides)
    return FlowSettings(**values)


# ── Definition builders ──────────────────────────────────────────────────


def linear_workflow(*steps: tuple[str, str], workflow_id: str = "wf-linear", **kwargs: Any) -> WorkflowDefinition:
    """``trigger -> steps[0] -> steps[1] ...`` where each step is ``(id, type)``."""
    nodes = [Node(id="trigger", type="trigger", name="Start")]
    edges = []
    previous = "trigger"
    for node_id, node_type in steps:
        nodes.append(Node(id=node_id, type=node_type, name=node_id.replace("_", " ").title()))
        edges.append(Edge(id=f"{previous}->{node_id}", source_node_id=previous, target_node_id=node_id))
        previous = node_id
    return WorkflowDefinition.create("Linear", nodes, edges, workflow_id=workflow_id, **kwargs)


def approval_workflow(workflow_id: str = "wf-approval") -> WorkflowDefinition:
    """trigger -> delay(5m) -> send_email -> condition(amount < 1000) -> webhook | update_status."""
    nodes = [
        Node(id="trigger", type="trigger", name="Order placed"),
        Node(id="wait", type="delay", name="Wait 5 minutes", config={"minutes": 5}),
        Node(id="email", type="send_email", name="Ask for approval", config={"to": "ops@example.com"}),
        Node(id="approved", type="condition", name="Approved?", config={"expression": "trigger.amount < 1000"}),
        Node(id="hook", type="webhook", name="Notify fulfilment"),
        Node(id="hold", type="update_status", name="Put on hold", config={"status": "hold"}),
    ]
    edges = [
        Edge(id="e1", source_node_id="trigger", target_node_id="wait"),
        Edge(id="e2", source_node_id="wait", target_node_id="email"),
        Edge(id="e3", source_node_id="email", target_node_id="approved"),
        Edge(id="e4", source_node_id="approved", target_node_id="hook", condition="true"),
        Edge(id="e5", source_node_id="approved", target_node_id="hold", condition="false"),
    ]
    return WorkflowDefinition.create("Approval", nodes, edges, workflow_id=workflow_id)


def signal_workflow(workflow_id: str = "wf-signal") -> WorkflowDefinition:
    """trigger -> wait_for_signal(approval) -> webhook."""
    nodes = [
        Node(id="trigger", type="trigger"),
        Node(id="await", type="wait_for_signal", name="Await approval", config={"signalType": "approval"}),
        Node(id="hook", type="webhook", name="Notify"),
    ]
    edges = [
        Edge(id="e1", source_node_id="trigger", target_node_id="await"),
        Edge(id="e2", source_node_id="await", target_node_id="hook"),
    ]
    return WorkflowDefinition.create("Signal", nodes, edges, workflow_id=workflow_id)
