"""
Service errors and the JSON envelope every /v1 route answers with.

Success: ``{"ok": true, "data", "message", "request_id", "timestamp"}``.
Failure: ``{"ok": false, "error": {"message", "code", "details"}, "request_id", "timestamp"}``.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ezjobs.config.logging import add_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class EzJobsException(Exception):
    """Base for errors a route turns into an error envelope with ``status_code``."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(EzJobsException):
    """Bad input: an unknown job type, a past send time, a malformed webhook URL."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid request"


class NotFoundError(EzJobsException):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(EzJobsException):
    """The resource is not in a state that allows the action."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class ForbiddenError(EzJobsException):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    return {
        "ok": False,
        "error": {"message": message, "code": status_code, "details": details or {}},
        "request_id": request_id,
        "timestamp": _now_iso(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": _now_iso(),
    }


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error(
    request_id: str, code: int, message: str, details: dict[str, Any] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=code,
        content=create_error_response(code, message, details, request_id),
    )


async def ezjobs_exception_handler(
    request: Request, exc: EzJobsException
) -> JSONResponse:
    request_id = _request_id(request)
    log = logger.bind(request_id=request_id, status_code=exc.status_code)
    if exc.status_code >= 500:
        log.error("Service error", error=exc.__class__.__name__, message=exc.message)
    else:
        log.info(
            "Request rejected",
            error=exc.__class__.__name__,
            message=exc.message,
            details=exc.details,
        )
    return _error(request_id, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework errors (unknown route, wrong method) in the same envelope."""
    request_id = _request_id(request)
    logger.bind(request_id=request_id).warning(
        "HTTP exception", status_code=exc.status_code, detail=exc.detail
    )
    return _error(request_id, exc.status_code, str(exc.detail))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.bind(request_id=request_id).error(
        "Unhandled exception",
        error=exc.__class__.__name__,
        message=str(exc),
        exc_info=True,
    )
    return _error(
        request_id, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlates a request's log lines and echoes its id back to the caller."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        add_request_context(request_id, method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
