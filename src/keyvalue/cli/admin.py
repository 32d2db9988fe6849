"""Administrative tooling for keyvalue tenants."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Optional

import httpx


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="keyvalue tenant administration")
    parser.add_argument("--base-url", required=True, help="Gateway base URL")
    parser.add_argument("--admin-token", required=True, help="Admin bearer token")
    parser.add_argument("--json", action="store_true", help="Output JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    provision = subparsers.add_parser("provision", help="Provision a new tenant")
    provision.add_argument("--region", default=None, help="Region override")
    provision.add_argument("--zone-id", default=None, help="Availability zone override")

    for name, help_text in (
        ("show", "Show a tenant record"),
        ("suspend", "Suspend a tenant"),
        ("reactivate", "Reactivate a suspended tenant"),
        ("rotate-token", "Issue an additional API token"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("tenant_id", help="Tenant identifier")

    revoke = subparsers.add_parser("revoke-token", help="Revoke an API token")
    revoke.add_argument("token", help="Token to revoke")

    return parser.parse_args(argv)


def _headers(admin_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}


async def provision_tenant(
    base_url: str, admin_token: str, region: Optional[str], zone_id: Optional[str]
) -> dict[str, Any]:
    payload = {key: value for key, value in {"region": region, "zone_id": zone_id}.items() if value}
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            f"{base_url.rstrip('/')}/v1/tenants",
            headers=_headers(admin_token),
            json=payload,
        )
        response.raise_for_status()
        return response.json()


async def fetch_tenant(base_url: str, admin_token: str, tenant_id: str) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(f"{base_url.rstrip('/')}/v1/tenants/{tenant_id}", headers=_headers(admin_token))
        response.raise_for_status()
        return response.json()


async def tenant_action(base_url: str, admin_token: str, tenant_id: str, action: str) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.post(
            f"{base_url.rstrip('/')}/v1/tenants/{tenant_id}/{action}",
            headers=_headers(admin_token),
        )
        response.raise_for_status()
        return response.json()


async def revoke_token(base_url: str, admin_token: str, token: str) -> None:
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.post(
            f"{base_url.rstrip('/')}/v1/tokens/revoke",
            headers=_headers(admin_token),
            json={"token": token},
        )
        response.raise_for_status()


def print_tenant(record: dict[str, Any]) -> None:
    for field in ("id", "status", "region", "zone_id", "bucket_name", "created_at"):
        print(f"{field:<12} {record.get(field, '-')}")


async def run(args: Optional[argparse.Namespace] = None) -> None:
    args = args or parse_args()
    if args.command == "provision":
        result = await provision_tenant(args.base_url, args.admin_token, args.region, args.zone_id)
        if args.json:
            print(json.dumps(result, indent=2))
        else:
            print_tenant(result["tenant"])
            print(f"{'token':<12} {result['token']['token']}")
    elif args.command == "show":
        record = await fetch_tenant(args.base_url, args.admin_token, args.tenant_id)
        if args.json:
            print(json.dumps(record, indent=2))
        else:
            print_tenant(record)
    elif args.command in {"suspend", "reactivate"}:
        result = await tenant_action(args.base_url, args.admin_token, args.tenant_id, args.command)
        if args.json:
            print(json.dumps(result, indent=2))
        else:
            print(f"{args.command} {args.tenant_id}: ok")
    elif args.command == "rotate-token":
        token = await tenant_action(args.base_url, args.admin_token, args.tenant_id, "tokens")
        if args.json:
            print(json.dumps(token, indent=2))
        else:
            print(f"new token for {args.tenant_id}: {token['token']}")
    elif args.command == "revoke-token":
        await revoke_token(args.base_url, args.admin_token, args.token)
        if args.json:
            print(json.dumps({"revoked": True}))
        else:
            print("token revoked")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
