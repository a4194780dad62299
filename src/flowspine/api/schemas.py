"""
API schemas: response envelopes, RFC 7807 errors, and request bodies.

Every endpoint returns either :class:`SuccessResponse` / :class:`PagedResponse`
or :class:`ProblemDetail` (4xx/5xx).
"""

from __future__ import annotations

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error codes:
        - ``NOT_FOUND`` (404): Workflow, run, or dead-letter entry does not exist
        - ``VALIDATION_FAILED`` (400): Invalid definition or request
        - ``CONFLICT`` (409): Operation conflicts with the run's current state
        - ``INTERNAL`` (500): Unexpected server error
    """

    type: str = Field(default="about:blank")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code")
    code: str = Field(default="INTERNAL", description="Operation error code")
    detail: str = Field(default="")
    instance: str = Field(default="")


# ── Success Envelopes ────────────────────────────────────────────────────


class PageMeta(BaseModel):
    total: int = Field(description="Total items across all pages")
    limit: int = Field(description="Items per page (requested)")
    offset: int = Field(description="Current offset (0-based)")
    has_more: bool = Field(description="True if more pages exist after current")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope for single-item responses."""

    data: T = Field(description="Response payload (type varies by endpoint)")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")


class PagedResponse(BaseModel, Generic[T]):
    """Paged success envelope for list responses."""

    data: list[T] = Field(description="List of items for this page")
    page: PageMeta = Field(description="Pagination metadata")
    elapsed_ms: float = Field(default=0.0)
    warnings: list[str] = Field(default_factory=list)


# ── Request bodies ───────────────────────────────────────────────────────


class NodeSchema(BaseModel):
    id: str
    type: str
    name: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    compensation: str | None = Field(default=None, description="Node type run to undo this node")
    timeout_seconds: float | None = Field(default=None, gt=0)


class EdgeSchema(BaseModel):
    id: str | None = None
    source_node_id: str
    target_node_id: str
    condition: str | None = Field(
        default=None,
        description="'true'/'false' keyword or an expression over the run context; null = unconditional",
    )


class RetryPolicySchema(BaseModel):
    backoff: Literal["exponential", "linear", "fixed"] = "exponential"
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=300.0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    jitter: float = Field(default=0.1, ge=0, le=1)


class WorkflowCreateRequest(BaseModel):
    """Body for ``POST /workflows``."""

    id: str | None = None
    name: str = Field(min_length=1)
    description: str | None = None
    trigger_type: Literal["manual", "event", "schedule"] = "manual"
    nodes: list[NodeSchema]
    edges: list[EdgeSchema] = Field(default_factory=list)
    retry_policy: RetryPolicySchema | None = None
    enabled: bool = True


class StartRunBody(BaseModel):
    trigger_data: dict[str, Any] = Field(default_factory=dict)


class ResumeRunBody(BaseModel):
    signal_data: dict[str, Any] | None = None


class CancelRunBody(BaseModel):
    reason: str | None = None


class EmitSignalBody(BaseModel):
    signal_type: str = Field(min_length=1)
    signal_data: dict[str, Any] = Field(default_factory=dict)
    source: str = "api"
    deliver: bool = Field(default=False, description="Deliver now instead of on the next sweep")


class ResolveDeadLetterBody(BaseModel):
    action: Literal["dismissed", "requeued"] = "dismissed"
