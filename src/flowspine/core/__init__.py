"""Core primitives: errors, logging, settings, and the SQLite connection."""

from flowspine.core.errors import (
    ConditionError,
    DeadLetterNotFoundError,
    DefinitionError,
    ErrorCategory,
    ErrorContext,
    FlowError,
    InvalidTransitionError,
    NotFoundError,
    ResumeRejectedError,
    RunDeadlineExceeded,
    RunNotFoundError,
    StepExecutionError,
    StepTimeoutError,
    WorkflowNotFoundError,
)
from flowspine.core.logging import LogContext, configure_logging, get_logger
from flowspine.core.settings import FlowSettings

__all__ = [
    "ConditionError",
    "DeadLetterNotFoundError",
    "DefinitionError",
    "ErrorCategory",
    "ErrorContext",
    "FlowError",
    "FlowSettings",
    "InvalidTransitionError",
    "LogContext",
    "NotFoundError",
    "ResumeRejectedError",
    "RunDeadlineExceeded",
    "RunNotFoundError",
    "StepExecutionError",
    "StepTimeoutError",
    "WorkflowNotFoundError",
    "configure_logging",
    "get_logger",
]
