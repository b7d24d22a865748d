"""API middleware: request logging and error handling.

Starlette middleware is a stack (last added runs first).  ``create_app``
adds ``ErrorHandlingMiddleware`` first and ``RequestLoggingMiddleware``
second, so request logging is outermost and records the final status
code, including errors converted to JSON below.
"""

from __future__ import annotations

import time

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from bookresolver.api.schemas import ErrorResponse
from bookresolver.utils.errors import (
    BookResolverError,
    CatalogStoreError,
    NotFoundError,
    RecommendationUnavailableError,
    ResolutionCancelledError,
    ValidationError,
)
from bookresolver.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Checked in order; the first matching class decides the status code.
_STATUS_BY_ERROR: tuple[tuple[type[BookResolverError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (RecommendationUnavailableError, 503),
    (CatalogStoreError, 503),
    (ResolutionCancelledError, 504),
)


def status_for(exc: BookResolverError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``BookResolverError`` subclasses into JSON :class:`ErrorResponse` bodies.

    Details stay in the server log; the client gets the error class name
    and message only.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except BookResolverError as exc:
            status = status_for(exc)
            log = _logger.warning if status < 500 else _logger.error
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status,
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status, content=body.model_dump())
