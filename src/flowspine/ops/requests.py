"""
Typed request objects for operations.

Each dataclass is the input contract for one operation function: only
validated, transport-agnostic data, no raw HTTP bodies or CLI params.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ------------------------------------------------------------------ #
# Workflows
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class RegisterWorkflowRequest:
    """Request for :func:`flowspine.ops.workflows.register_workflow`.

    ``definition`` uses the shape of ``WorkflowDefinition.to_dict()``;
    ``id`` may be omitted and is then generated.
    """

    definition: dict[str, Any] = field(default_factory=dict)


# ------------------------------------------------------------------ #
# Runs
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class StartRunRequest:
    workflow_id: str = ""
    trigger_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ResumeRunRequest:
    run_id: str = ""
    signal_data: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class CancelRunRequest:
    run_id: str = ""
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ListRunsRequest:
    workflow_id: str | None = None
    status: str | None = None
    limit: int = 50
    offset: int = 0


# ------------------------------------------------------------------ #
# Signals
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class EmitSignalRequest:
    """Request for :func:`flowspine.ops.signals.emit_signal`.

    Attributes:
        deliver: Hand the signal to its run immediately instead of waiting
            for the next scheduler sweep.
    """

    run_id: str = ""
    signal_type: str = ""
    signal_data: dict[str, Any] = field(default_factory=dict)
    source: str = "manual"
    deliver: bool = False


# ------------------------------------------------------------------ #
# Dead letters
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListDeadLettersRequest:
    include_resolved: bool = False
    workflow_id: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ResolveDeadLetterRequest:
    entry_id: str = ""
    action: str = "dismissed"
