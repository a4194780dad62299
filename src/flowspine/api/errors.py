"""
RFC 7807 problem responses for failed operations and unhandled exceptions.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from flowspine.api.schemas import ProblemDetail
from flowspine.core.logging import get_logger
from flowspine.ops.result import ErrorCode, OperationResult

logger = get_logger(__name__)


def problem_response(status: int, code: str, title: str, *, detail: str = "", instance: str = "") -> JSONResponse:
    body = ProblemDetail(title=title, status=status, code=code, detail=detail, instance=instance)
    return JSONResponse(status_code=status, content=body.model_dump())


def handle_error(result: OperationResult, *, instance: str = "") -> JSONResponse:
    """404 / 409 / 400 / 500 according to the operation's error code."""
    error = result.error
    if error is None:
        return problem_response(500, ErrorCode.INTERNAL.value, "Operation failed", instance=instance)
    detail = ", ".join(f"{k}={v}" for k, v in error.details.items())
    return problem_response(error.http_status, error.code, error.message, detail=detail, instance=instance)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("api_unhandled_error", path=request.url.path, error=str(exc))
    return problem_response(
        500,
        ErrorCode.INTERNAL.value,
        "Internal Server Error",
        detail="An unexpected error occurred.",
        instance=request.url.path,
    )
