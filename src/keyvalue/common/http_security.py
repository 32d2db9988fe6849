"""Guards for operator-only HTTP endpoints."""

from __future__ import annotations

import hmac
from ipaddress import ip_address
from typing import Optional

from fastapi import HTTPException, Request, status


def require_token_or_loopback(request: Request, token: Optional[str], realm: str) -> None:
    """Accept the configured bearer token, or any loopback client when none is set."""

    if token:
        expected = f"Bearer {token}"
        auth_header = request.headers.get("authorization")
        if not auth_header or not hmac.compare_digest(auth_header, expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid {realm} token")
        return

    client = request.client
    client_host = client.host if client else None
    if not client_host:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{realm.capitalize()} access denied")

    try:
        if not ip_address(client_host).is_loopback:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{realm.capitalize()} access restricted to localhost",
            )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{realm.capitalize()} access denied") from exc


def require_metrics_access(request: Request, token: Optional[str]) -> None:
    require_token_or_loopback(request, token, "metrics")


def require_admin_access(request: Request, token: Optional[str]) -> None:
    require_token_or_loopback(request, token, "admin")
