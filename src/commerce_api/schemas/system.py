"""Health and quota response schemas."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    profile: str


class QuotaResponse(BaseModel):
    """The caller's bucket as seen after the current request was admitted."""

    tier: str
    capacity: int
    remaining: int
