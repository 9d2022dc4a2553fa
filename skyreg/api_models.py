from __future__ import annotations

from pydantic import BaseModel, Field


class DescriptorPayload(BaseModel):
    """What a derivation rule or plugin must return for one container."""

    name: str = Field(..., min_length=1, description="Service name, e.g. redis")
    instance: str = Field(..., min_length=1, description="Instance of the service, e.g. redis1")
    host: str = Field(..., min_length=1, description="Address the service answers on")
    environment: str = Field(..., min_length=1, description="testing, production, dev, ...")
    ttl: int = Field(..., ge=1, description="Registration TTL in seconds")
    port: int = Field(80, ge=1, le=65535)


class RegistrationView(BaseModel):
    key: str
    name: str
    instance: str
    host: str
    port: int
    ttl_seconds: int
    beat_interval_s: float
    consecutive_errors: int
    started_at: str


class HealthView(BaseModel):
    status: str = "healthy"
    registrations: int = 0


class EventView(BaseModel):
    id: int
    ts: str
    level: str
    service_key: str | None = None
    service_name: str | None = None
    message: str
