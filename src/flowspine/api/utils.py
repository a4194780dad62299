"""
Shared router helpers: render an ``OperationResult`` as an envelope or a
Problem Details response.
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from flowspine.api.errors import handle_error
from flowspine.api.schemas import PagedResponse, PageMeta, SuccessResponse
from flowspine.ops.result import OperationResult, PagedResult


def respond(result: OperationResult) -> SuccessResponse[Any] | JSONResponse:
    if not result.success:
        return handle_error(result)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms, warnings=result.warnings)


def respond_paged(result: PagedResult) -> PagedResponse[Any] | JSONResponse:
    if not result.success:
        return handle_error(result)
    return PagedResponse(
        data=result.data or [],
        page=PageMeta(
            total=result.total,
            limit=result.limit,
            offset=result.offset,
            has_more=result.has_more,
        ),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )
