"""Bearer-token authentication for KV requests."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from ..common.errors import ForbiddenError, UnauthorizedError
from ..common.schemas import Tenant
from ..tenants.registry import TenantRegistry


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from ``Bearer <token>``; the scheme is case-insensitive."""

    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


def authenticate(authorization: Optional[str], registry: TenantRegistry) -> Tenant:
    token = extract_bearer_token(authorization)
    if token is None:
        raise UnauthorizedError()
    tenant = registry.lookup_by_token(token)
    if tenant is None:
        raise UnauthorizedError("Invalid API token")
    if not registry.is_active(tenant):
        raise ForbiddenError()
    return tenant


def get_registry(request: Request) -> TenantRegistry:
    return request.app.state.gateway_state.registry  # type: ignore[attr-defined]


def require_tenant(
    authorization: str | None = Header(default=None, alias="Authorization"),
    registry: TenantRegistry = Depends(get_registry),
) -> Tenant:
    return authenticate(authorization, registry)
