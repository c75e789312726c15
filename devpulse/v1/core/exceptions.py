import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from devpulse.config.logging import add_request_context, get_logger

logger = get_logger(__name__)


class DevPulseException(Exception):
    """Base exception for the DevPulse job service."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DevPulseException):
    """Raised when input validation fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class NotFoundError(DevPulseException):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class JobNotFoundError(NotFoundError):
    """Raised when a status transition targets a job that does not exist."""

    def __init__(self, job_pk: Any):
        super().__init__("Job not found", {"id": str(job_pk)})


class InvalidJobTransitionError(DevPulseException):
    """Raised when a job that is not processing is asked to change status."""

    def __init__(self, job_pk: Any, current: str, requested: str):
        super().__init__(
            f"Cannot move job from {current} to {requested}",
            status.HTTP_409_CONFLICT,
            {"id": str(job_pk), "current": current, "requested": requested},
        )


class LeaseLostError(InvalidJobTransitionError):
    """Raised when a result arrives for a claim that no longer owns the job.

    The lease expired and the job was reclaimed, and possibly claimed again,
    before the original holder reported back.
    """

    def __init__(self, job_pk: Any, attempt: int, current: str, current_attempt: int):
        DevPulseException.__init__(
            self,
            f"Claim for attempt {attempt} no longer holds job "
            f"(now {current}, attempt {current_attempt})",
            status.HTTP_409_CONFLICT,
            {
                "id": str(job_pk),
                "attempt": attempt,
                "current": current,
                "current_attempt": current_attempt,
            },
        )
        self.attempt = attempt


class StoreError(DevPulseException):
    """Raised when the job store cannot complete an operation."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(
            f"Job store failure during {operation}: {cause}",
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {"operation": operation, "cause": cause.__class__.__name__},
        )
        self.operation = operation


REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 128


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    headers = {REQUEST_ID_HEADER: request_id}
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(status_code, message, details, request_id),
        headers=headers,
    )


async def devpulse_exception_handler(
    request: Request, exc: DevPulseException
) -> JSONResponse:
    """Render application exceptions with their own status code."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_json(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected errors never leak their message to the client."""
    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        exc_info=True,
    )
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id to the request, its log lines and its response.

    A caller-supplied ``X-Request-ID`` is reused so triggers from external
    schedulers can be traced end to end.
    """

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
        request_id = incoming[:_MAX_REQUEST_ID_LENGTH] or str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
