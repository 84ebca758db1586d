import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from commerce_api.config import Settings, settings
from commerce_api.db.session import shutdown
from commerce_api.handlers import register_exception_handlers
from commerce_api.logging import get_logger
from commerce_api.middleware import (
    RATE_LIMIT_REMAINING_HEADER,
    RATE_LIMIT_RETRY_AFTER_HEADER,
    REQUEST_ID_HEADER,
    RateLimitMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    UnhandledErrorMiddleware,
)
from commerce_api.ratelimit import RateLimiter
from commerce_api.routers import system
from commerce_api.tls import detect_server_profile

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager: startup before the yield, shutdown after it.

    Startup: start the idle-bucket sweeper.
    Shutdown: stop the sweeper, close database connections gracefully.
    """
    app_settings: Settings = app.state.settings
    limiter: RateLimiter = app.state.rate_limiter
    sweeper = asyncio.create_task(
        limiter.run_evictions(app_settings.rate_limit_sweep_interval_seconds)
    )
    logger.info(
        "application_started",
        service=app_settings.service_name,
        profile=app.state.server_profile.name,
    )
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await shutdown()


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the application with its own rate limiter and error handling."""
    app_settings = app_settings or settings

    app = FastAPI(
        title=app_settings.service_name,
        version=app_settings.service_version,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.rate_limiter = RateLimiter(
        app_settings.rate_limit_policies(),
        idle_ttl_seconds=app_settings.rate_limit_idle_ttl_seconds,
    )
    app.state.server_profile = detect_server_profile(
        app_settings.tls_cert_dirs,
        app_settings.tls_cert_filename,
        app_settings.tls_key_filename,
    )

    register_exception_handlers(app)
    app.include_router(system.router)

    # The last middleware added is the outermost one
    app.add_middleware(UnhandledErrorMiddleware)
    if app_settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=app.state.rate_limiter,
            path_prefix=app_settings.rate_limit_path_prefix,
        )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_allowed_origins,
        allow_methods=app_settings.cors_allowed_methods,
        allow_headers=app_settings.cors_allowed_headers,
        allow_credentials=True,
        expose_headers=[
            REQUEST_ID_HEADER,
            RATE_LIMIT_REMAINING_HEADER,
            RATE_LIMIT_RETRY_AFTER_HEADER,
        ],
    )
    return app


app = create_app()
