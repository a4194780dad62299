"""
Operation result envelope.

Every operation function returns an :class:`OperationResult` (or a
:class:`PagedResult` for lists) instead of raising. The CLI renders it as a
table or JSON, and the API as an envelope or an RFC 7807 problem, without
either knowing which engine exception produced a failure.

Engine errors map onto four codes::

    NotFoundError                               NOT_FOUND          404
    ResumeRejectedError, InvalidTransitionError CONFLICT           409
    DefinitionError (incl. ConditionError)      VALIDATION_FAILED  400
    anything else                               INTERNAL           500
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from flowspine.core.errors import (
    DefinitionError,
    FlowError,
    InvalidTransitionError,
    NotFoundError,
    ResumeRejectedError,
)

T = TypeVar("T")


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTERNAL = "INTERNAL"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @classmethod
    def for_exception(cls, exc: FlowError) -> ErrorCode:
        if isinstance(exc, NotFoundError):
            return cls.NOT_FOUND
        if isinstance(exc, (ResumeRejectedError, InvalidTransitionError)):
            return cls.CONFLICT
        if isinstance(exc, DefinitionError):
            return cls.VALIDATION_FAILED
        return cls.INTERNAL


_HTTP_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.INTERNAL: 500,
}


@dataclass(frozen=True, slots=True)
class OperationError:
    """Why an operation failed.

    Attributes:
        code: One of the :class:`ErrorCode` values, as a plain string
        message: Human-readable description
        details: Run/node identifiers copied from the engine error
        retryable: Whether calling again later may succeed
    """

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False

    @property
    def http_status(self) -> int:
        try:
            return ErrorCode(self.code).http_status
        except ValueError:
            return 500


@dataclass
class OperationResult[T]:
    """Success payload or structured error, plus warnings and timing.

    Build with :meth:`ok`, :meth:`fail`, or :meth:`from_error`.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: T,
        *,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        return cls(
            success=True,
            data=data,
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    @classmethod
    def fail(
        cls,
        code: ErrorCode | str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
    ) -> OperationResult[T]:
        code = code.value if isinstance(code, ErrorCode) else code
        return cls(
            success=False,
            error=OperationError(code=code, message=message, details=details or {}, retryable=retryable),
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def from_error(cls, exc: FlowError, *, elapsed_ms: float = 0.0) -> OperationResult[T]:
        return cls.fail(
            ErrorCode.for_exception(exc),
            exc.message,
            details=exc.context.to_dict(),
            retryable=exc.retryable,
            elapsed_ms=elapsed_ms,
        )


@dataclass
class PagedResult(OperationResult[list[T]]):
    """One page of a list operation; ``has_more`` says whether another page follows."""

    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 50,
        offset: int = 0,
        elapsed_ms: float = 0.0,
    ) -> PagedResult[T]:
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(items) < total,
            elapsed_ms=elapsed_ms,
        )


class Stopwatch:
    __slots__ = ("_started",)

    def __init__(self) -> None:
        self._started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._started) * 1000, 3)


def start_timer() -> Stopwatch:
    return Stopwatch()
