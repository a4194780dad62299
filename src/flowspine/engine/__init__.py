"""
Workflow engine: data model, retry policy, step registry, and executor.

``flowspine.engine.executor`` is not re-exported here; it depends on the
store layer, which in turn depends on these models.
"""

from flowspine.engine.models import (
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
)
from flowspine.engine.registry import StepExecutor, StepExecutorRegistry, step
from flowspine.engine.retry import RetryPolicy

__all__ = [
    "DeadLetterEntry",
    "Edge",
    "Node",
    "RetryPolicy",
    "RunStatus",
    "Signal",
    "StepExecutor",
    "StepExecutorRegistry",
    "StepLogEntry",
    "StepStatus",
    "TriggerType",
    "WorkflowDefinition",
    "WorkflowRun",
    "step",
]
