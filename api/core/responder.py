"""Responder: turns outcomes into JSON envelopes.

Success:  {"data": <payload>}
Failure:  {"error": {"kind": <ErrorKind>, "message": <str>}}

The status code of a failure is a pure function of its kind. Internal
messages are replaced with a generic string before they leave the
process; the original cause goes to the log.
"""

from typing import Any, Generic, TypeVar

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.errors import (
    DomainError,
    ErrorKind,
    InternalError,
    InvalidError,
    NotFoundError,
)
from core.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred."

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class Envelope(BaseModel, Generic[T]):
    """Success envelope used as handler response model."""

    data: T


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_KIND[kind]


def error_body(error: DomainError) -> dict[str, Any]:
    """Build the failure envelope for ``error``."""
    message = (
        GENERIC_INTERNAL_MESSAGE
        if error.kind is ErrorKind.INTERNAL
        else error.message
    )
    return {"error": {"kind": error.kind.value, "message": message}}


def render_error(
    error: DomainError,
    log: structlog.stdlib.BoundLogger | None = None,
) -> JSONResponse:
    """Log ``error`` and render its envelope."""
    log = (log or logger).bind(error_kind=error.kind.value)
    if error.kind is ErrorKind.INTERNAL:
        cause = error.root_cause() or error
        log.error(
            "responder.internal_error",
            error_message=error.message,
            exc_info=(type(cause), cause, cause.__traceback__),
        )
    elif error.kind is ErrorKind.INVALID:
        log.info(
            "responder.invalid_request",
            error_message=error.message,
            error_details=error.details,
        )
    else:
        log.info("responder.domain_error", error_message=error.message)

    return JSONResponse(status_code=status_for(error.kind), content=error_body(error))


def _request_logger(request: Request) -> structlog.stdlib.BoundLogger:
    trace_id = request.scope.get("state", {}).get("trace_id")
    return logger.bind(
        trace_id=trace_id,
        http_method=request.method,
        http_path=request.url.path,
    )


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, DomainError):
        exc = InternalError(str(exc), cause=exc)
    return render_error(exc, _request_logger(request))


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Transport input that failed parsing becomes an Invalid error."""
    if not isinstance(exc, RequestValidationError):
        return render_error(InternalError(str(exc), cause=exc), _request_logger(request))

    details = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    if any(d["type"] == "json_invalid" for d in details):
        message = "request body is not valid JSON"
    else:
        message = "request validation failed"
    return render_error(
        InvalidError(message, details=details), _request_logger(request)
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Framework HTTP errors (unmatched routes mostly) rendered as envelopes."""
    status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail = getattr(exc, "detail", None)

    error: DomainError
    if status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
        error = NotFoundError(
            f"no route for {request.method} {request.url.path}"
        )
    elif status_code < 500:
        error = InvalidError(str(detail) if detail else "bad request")
    else:
        error = InternalError(str(detail) if detail else "server error", cause=exc)
    return render_error(error, _request_logger(request))


def register_error_handlers(app: FastAPI) -> None:
    """Register all envelope-producing error handlers on the FastAPI app."""
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
