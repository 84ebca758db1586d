"""Application errors raised by services, guards and the limiter.

Every error carries an ``ErrorKind`` that fixes its HTTP status and
category label. The exception handlers in ``handlers.py`` turn them into
the standard error envelope; nothing here knows about HTTP responses.
"""

from collections.abc import Iterable
from enum import Enum


class ErrorKind(Enum):
    """Failure kinds with their HTTP status and envelope category."""

    VALIDATION = (400, "Validation Error")
    UNAUTHENTICATED = (401, "Authentication Error")
    UNAUTHORIZED = (403, "Access Denied")
    NOT_FOUND = (404, "Not Found")
    CONFLICT = (409, "Conflict")
    RATE_LIMITED = (429, "Too Many Requests")
    INTERNAL = (500, "Internal Error")

    def __init__(self, status: int, category: str) -> None:
        self.status = status
        self.category = category


class DomainError(Exception):
    """Base class for all application errors.

    Defaults to VALIDATION: a generic business-rule violation is the
    client's to fix.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        details: Iterable[str] = (),
        kind: ErrorKind | None = None,
    ) -> None:
        self.message = message
        self.details: tuple[str, ...] = tuple(details)
        if kind is not None:
            self.kind = kind
        super().__init__(message)

    @property
    def status(self) -> int:
        return self.kind.status


class InvalidInputError(DomainError):
    """Raised when client input is malformed or breaks a business rule."""

    kind = ErrorKind.VALIDATION


class AuthenticationRequiredError(DomainError):
    """Raised when a request needs credentials it did not provide."""

    kind = ErrorKind.UNAUTHENTICATED


class UnauthorizedOperationError(DomainError):
    """Raised when an authenticated caller lacks permission for an operation."""

    kind = ErrorKind.UNAUTHORIZED


class NotFoundError(DomainError):
    """Raised when a requested entity does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} with id {identifier} not found")


class ConflictError(DomainError):
    """Raised when an operation conflicts with stored state (e.g. duplicate)."""

    kind = ErrorKind.CONFLICT


class RateLimitExceededError(DomainError):
    """A client used up its request quota."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "Rate limit exceeded",
            details=[f"Retry after {retry_after_seconds} seconds"],
        )
