"""
Structured logging for flowspine.

Every module logs key/value events through structlog::

    logger = get_logger(__name__)
    logger.info("run_suspended", run_id=run.id, status="awaiting_timer")

Processor chain (set up once by :func:`configure_logging`)::

    merge_contextvars         run_id / workflow_id bound by LogContext
    TimeStamper(iso, utc)
    add_log_level, add_logger_name
    _add_service_metadata     "service.name"
    _expand_flow_errors       FlowError values → their to_dict()
    JSONRenderer              non-tty (scheduler daemons, API servers)
    ConsoleRenderer           interactive terminals

Log lines go to stderr so that ``--json`` CLI output on stdout stays
machine-readable.

The executor wraps each invocation in ``LogContext(run_id=..., workflow_id=...)``,
so step-level events carry the run identity without passing it around.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "flowspine"


def _add_service_metadata(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _expand_flow_errors(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render ``FlowError`` values (category, retryable, run context) as dicts."""
    from flowspine.core.errors import FlowError

    for key, value in event_dict.items():
        if isinstance(value, FlowError):
            event_dict[key] = value.to_dict()
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "flowspine",
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: Force JSON (True) or console (False); None picks JSON
            unless stderr is a terminal
        service: Value of the ``service.name`` field
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    numeric_level = getattr(logging, level.upper())
    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service_metadata,
        _expand_flow_errors,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind keys for the duration of a ``with`` block; ``None`` values are skipped.

    Example:
        with LogContext(run_id=run.id, workflow_id=run.workflow_id):
            logger.info("step_started", node_id="email")
    """

    def __init__(self, **kwargs: Any) -> None:
        self._context = {k: v for k, v in kwargs.items() if v is not None}

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context)


__all__ = [
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
