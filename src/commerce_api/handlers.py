"""Error responder and exception handlers.

Every failure leaves the API as the same envelope (schemas/error.py).
Application errors keep their kind, message and details; anything else
becomes a 500 with a fixed message. No stack traces or driver messages
reach the client.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from commerce_api.db.guard import conflict_from_integrity
from commerce_api.exceptions import DomainError, ErrorKind
from commerce_api.logging import get_logger
from commerce_api.schemas.error import ErrorResponse

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"
VALIDATION_ERROR_MESSAGE = "Request validation failed"


def to_envelope(error: BaseException, path: str) -> ErrorResponse:
    """Build the error envelope for ``error`` raised while serving ``path``."""
    if isinstance(error, DomainError):
        kind, message, details = error.kind, error.message, list(error.details)
    else:
        kind, message, details = ErrorKind.INTERNAL, INTERNAL_ERROR_MESSAGE, []
    return ErrorResponse(
        timestamp=datetime.now(UTC),
        status=kind.status,
        error=kind.category,
        message=message,
        path=path,
        details=details,
    )


def _json(envelope: ErrorResponse, headers: Mapping[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=envelope.status,
        content=envelope.model_dump(mode="json"),
        headers=dict(headers) if headers else None,
    )


def error_response(
    error: BaseException,
    path: str,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Render ``error`` as an envelope response."""
    return _json(to_envelope(error, path), headers)


def _field_errors(exc: RequestValidationError) -> list[str]:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        # Drop the "body"/"query"/"path" prefix unless it is all there is
        field = ".".join(location[1:]) or ".".join(location)
        details.append(f"{field}: {error.get('msg', 'invalid value')}")
    return details


def register_exception_handlers(app: FastAPI) -> None:
    """Register all error handlers on the FastAPI application."""

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        """Return the error's own status with its message and details."""
        logger.warning(
            "domain_error",
            kind=exc.kind.name,
            error=exc.message,
            path=request.url.path,
        )
        return error_response(exc, request.url.path)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        """Constraint failures that escaped a guard, e.g. raised on commit."""
        conflict = conflict_from_integrity(exc)
        logger.warning("integrity_error", error=conflict.message, path=request.url.path)
        return error_response(conflict, request.url.path)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return 400 with one ``field: message`` entry per invalid input."""
        error = DomainError(VALIDATION_ERROR_MESSAGE, details=_field_errors(exc))
        return error_response(error, request.url.path)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Routing and framework errors (unknown path, wrong method) keep their status."""
        try:
            phrase = HTTPStatus(exc.status_code).phrase
        except ValueError:
            # Non-standard codes such as 499
            phrase = "Error"
        envelope = ErrorResponse(
            timestamp=datetime.now(UTC),
            status=exc.status_code,
            error=phrase,
            message=str(exc.detail) if exc.detail else phrase,
            path=request.url.path,
        )
        return _json(envelope, exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Last resort for errors raised by middleware outside UnhandledErrorMiddleware."""
        logger.exception("unhandled_exception", path=request.url.path, method=request.method)
        return error_response(exc, request.url.path)
