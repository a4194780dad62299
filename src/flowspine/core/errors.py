"""
Exceptions raised by the flowspine engine.

The executor chooses between retrying a step, dead-lettering the run, and
rejecting the caller by exception type and the ``retryable`` flag, never by
message text. The hierarchy::

    FlowError
    ├── StepExecutionError      retryable   a StepExecutor raised
    │   └── StepTimeoutError    retryable   step deadline exceeded
    ├── DefinitionError         fatal       malformed graph or unknown node type
    │   └── ConditionError      fatal       condition expression rejected
    ├── RunDeadlineExceeded     fatal       run time-to-live passed
    ├── ResumeRejectedError     caller      run is not in a resumable state
    ├── InvalidTransitionError  caller      illegal status change
    └── NotFoundError           caller      workflow, run or dead letter missing

Errors raised inside a run are tagged with the run and node they came from::

    raise StepExecutionError(str(e), cause=e).with_context(run_id=run.id, node_id=node.id)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    STEP = "STEP"
    TIMEOUT = "TIMEOUT"
    DEFINITION = "DEFINITION"
    STATE = "STATE"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Where in the engine an error happened.

    Identifiers left as ``None`` are omitted from :meth:`to_dict`; anything
    that is not one of the named fields lands in ``extra``.
    """

    workflow_id: str | None = None
    run_id: str | None = None
    node_id: str | None = None
    node_type: str | None = None
    signal_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        ids = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extra"}
        return {k: v for k, v in ids.items() if v is not None} | self.extra


class FlowError(Exception):
    """Base class. Subclasses pick their category and retryability."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **ids: Any) -> FlowError:
        """Record run/node identifiers on this error and return it."""
        known = {f.name for f in fields(ErrorContext)} - {"extra"}
        for key, value in ids.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.extra[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form used by the log renderer."""
        payload: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if context := self.context.to_dict():
            payload["context"] = context
        if self.cause is not None:
            payload["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class StepExecutionError(FlowError):
    """A StepExecutor raised or returned an error."""

    category = ErrorCategory.STEP
    retryable = True


class StepTimeoutError(StepExecutionError):
    category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, *, timeout: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.timeout = timeout


class DefinitionError(FlowError):
    """The workflow definition cannot run as written."""

    category = ErrorCategory.DEFINITION


class ConditionError(DefinitionError):
    def __init__(self, message: str, *, expression: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.expression = expression


class RunDeadlineExceeded(FlowError):
    category = ErrorCategory.TIMEOUT


class ResumeRejectedError(FlowError):
    """Resume, cancel or compensate was asked of a run in the wrong status."""

    category = ErrorCategory.STATE


class InvalidTransitionError(FlowError):
    category = ErrorCategory.STATE

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid RunStatus transition: {current} → {target}")


class NotFoundError(FlowError):
    category = ErrorCategory.NOT_FOUND


class WorkflowNotFoundError(NotFoundError):
    pass


class RunNotFoundError(NotFoundError):
    pass


class DeadLetterNotFoundError(NotFoundError):
    pass


__all__ = [
    "ConditionError",
    "DeadLetterNotFoundError",
    "DefinitionError",
    "ErrorCategory",
    "ErrorContext",
    "FlowError",
    "InvalidTransitionError",
    "NotFoundError",
    "ResumeRejectedError",
    "RunDeadlineExceeded",
    "RunNotFoundError",
    "StepExecutionError",
    "StepTimeoutError",
    "WorkflowNotFoundError",
]
