"""FastAPI middleware: request tracing, request logging, error translation and rate limiting."""

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from commerce_api.exceptions import RateLimitExceededError
from commerce_api.handlers import error_response
from commerce_api.logging import get_logger
from commerce_api.ratelimit import RateLimiter, Tier

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RATE_LIMIT_REMAINING_HEADER = "X-Rate-Limit-Remaining"
RATE_LIMIT_RETRY_AFTER_HEADER = "X-Rate-Limit-Retry-After-Seconds"

ADMIN_SCOPE = "admin"

CallNext = Callable[[Request], Awaitable[Response]]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add request ID to every request for tracing.

    - Reads X-Request-ID from request headers, or generates a UUID if missing
    - Binds request_id to structlog context (auto-included in all logs)
    - Adds X-Request-ID to response headers
    """

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the start and completion of each request with its duration."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        client = request.client.host if request.client else None
        logger.info("request_started", method=request.method, path=request.url.path, client=client)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=type(exc).__name__,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Turn uncaught exceptions into the 500 envelope.

    Installed innermost so the response still passes through the request
    ID and CORS middleware. Starlette's own ``Exception`` handler runs
    outside the whole user middleware stack.
    """

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception("unhandled_exception", path=request.url.path, method=request.method)
            return error_response(exc, request.url.path)


def resolve_client(request: Request) -> tuple[str, Tier]:
    """Return the rate-limit key and tier of the caller.

    Authenticated callers are keyed by user name. The user and its scopes
    come from Starlette's AuthenticationMiddleware when one is installed
    in front of this middleware; without it every caller is anonymous and
    keyed by client address.
    """
    user = request.scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        scopes = getattr(request.scope.get("auth"), "scopes", ())
        tier = Tier.ADMIN if ADMIN_SCOPE in scopes else Tier.USER
        return user.display_name, tier
    host = request.client.host if request.client else "unknown"
    return host, Tier.ANONYMOUS


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Admit or reject requests under ``path_prefix`` with a token bucket.

    Usage:
        app.add_middleware(RateLimitMiddleware, limiter=limiter, path_prefix="/api")

    Admitted responses carry X-Rate-Limit-Remaining. Rejected requests
    never reach the route: they get a 429 envelope carrying
    X-Rate-Limit-Retry-After-Seconds.
    """

    def __init__(self, app: ASGIApp, limiter: RateLimiter, path_prefix: str = "/api") -> None:
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix.rstrip("/")

    def _applies_to(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        if not self._applies_to(request.url.path):
            return await call_next(request)

        client_key, tier = resolve_client(request)
        decision = self.limiter.admit(client_key, tier)

        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                tier=tier.value,
                client=client_key,
                retry_after=decision.retry_after_seconds,
                path=request.url.path,
            )
            return error_response(
                RateLimitExceededError(decision.retry_after_seconds),
                request.url.path,
                headers={RATE_LIMIT_RETRY_AFTER_HEADER: str(decision.retry_after_seconds)},
            )

        response = await call_next(request)
        response.headers[RATE_LIMIT_REMAINING_HEADER] = str(decision.remaining_tokens)
        return response
