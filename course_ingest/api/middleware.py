"""API middleware: CORS, request logging and error translation.

Application errors (:class:`CourseIngestError` subclasses) are turned into
:class:`ErrorResponse` bodies.  Duplicate submissions map to 409 and
unknown entities to 404; everything else is a 500.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from course_ingest.api.schemas import ErrorResponse
from course_ingest.utils.errors import (
    CourseIngestError,
    DuplicateJobError,
    EntityNotFoundError,
    JobQueueError,
)
from course_ingest.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        # An exception escaping call_next leaves response unset; it is logged as 500.

        try:
            response = await call_next(request)
            return response
        finally:
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=response.status_code if response else 500,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )


def _status_for(exc: CourseIngestError) -> int:
    if isinstance(exc, DuplicateJobError):
        return 409
    if isinstance(exc, EntityNotFoundError):
        return 404
    if isinstance(exc, JobQueueError):
        return 400
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert application errors into structured JSON responses.

    Stack traces stay in the server log; the client sees the error class
    name and message only.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except CourseIngestError as exc:
            status_code = _status_for(exc)
            log = _logger.warning if status_code < 500 else _logger.error
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status_code, content=body.model_dump())
