"""Shared data models for the key-value gateway."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(UTC)


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(BaseModel):
    """Isolated customer account with its own storage namespace."""

    id: str
    created_at: datetime = Field(default_factory=utc_now)
    region: str
    zone_id: str
    bucket_name: str
    status: TenantStatus = TenantStatus.ACTIVE


class TenantToken(BaseModel):
    """API token bound to a single tenant."""

    token: str
    tenant_id: str
    created_at: datetime = Field(default_factory=utc_now)


class ProvisioningResult(BaseModel):
    tenant: Tenant
    token: TenantToken


class ProvisionRequest(BaseModel):
    region: Optional[str] = None
    zone_id: Optional[str] = None


class KVMetadata(BaseModel):
    """Metadata projected onto GET/HEAD response headers."""

    etag: str
    content_type: str = "application/octet-stream"
    content_length: int
    created_at: Optional[str] = None


Operation = Literal["GET", "PUT", "DELETE", "HEAD"]


class RequestMetrics(BaseModel):
    """One structured record per gateway request."""

    tenant_id: str
    operation: Operation
    status_code: int
    object_size: Optional[int] = None
    latency_ms: float
    key_hash: str


class ApiError(BaseModel):
    error: str
    code: str
    status: int


class PutResult(BaseModel):
    success: bool = True
    etag: str
