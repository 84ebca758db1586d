"""Operational endpoints: liveness and the caller's rate-limit quota."""

from fastapi import APIRouter, Request

from commerce_api.db.session import ping
from commerce_api.dependencies import DB, AppSettings, Limiter
from commerce_api.middleware import resolve_client
from commerce_api.schemas.system import HealthResponse, QuotaResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, status_code=200)
async def health(request: Request, db: DB, app_settings: AppSettings) -> HealthResponse:
    """Health check endpoint, verifies database connectivity.

    Returns 200 only if the database answers a ping query; otherwise the
    failure surfaces as the standard 500 envelope.
    """
    await ping(db)
    return HealthResponse(
        status="ok",
        service=app_settings.service_name,
        version=app_settings.service_version,
        profile=request.app.state.server_profile.name,
    )


@router.get("/api/quota", response_model=QuotaResponse, status_code=200)
async def quota(request: Request, limiter: Limiter) -> QuotaResponse:
    """Report the caller's tier and remaining tokens."""
    client_key, tier = resolve_client(request)
    snapshot = limiter.snapshot(client_key, tier)
    return QuotaResponse(
        tier=snapshot.tier.value,
        capacity=snapshot.capacity,
        remaining=snapshot.remaining_tokens,
    )
