from __future__ import annotations

import json

import pytest

from keyvalue.cli import admin

BASE = ["--base-url", "http://gateway:8080", "--admin-token", "secret"]

TENANT = {
    "id": "abc123def456",
    "created_at": "2024-01-01T00:00:00Z",
    "region": "us-east-1",
    "zone_id": "use1-az4",
    "bucket_name": "keyvalue-abc123def456--use1-az4--x-s3",
    "status": "active",
}


def test_parse_args_provision_overrides():
    args = admin.parse_args([*BASE, "provision", "--zone-id", "use1-az6"])
    assert args.command == "provision"
    assert args.zone_id == "use1-az6"
    assert args.region is None
    assert args.base_url == "http://gateway:8080"


def test_parse_args_requires_command():
    with pytest.raises(SystemExit):
        admin.parse_args(BASE)


@pytest.mark.asyncio
async def test_provision_prints_tenant_and_token(monkeypatch, capsys):
    calls = {}

    async def fake_provision(base_url, admin_token, region, zone_id):
        calls.update(base_url=base_url, admin_token=admin_token, region=region, zone_id=zone_id)
        return {"tenant": TENANT, "token": {"token": "t" * 64, "tenant_id": TENANT["id"]}}

    monkeypatch.setattr(admin, "provision_tenant", fake_provision)

    await admin.run(admin.parse_args([*BASE, "provision", "--region", "us-west-2"]))
    output = capsys.readouterr().out
    assert calls == {
        "base_url": "http://gateway:8080",
        "admin_token": "secret",
        "region": "us-west-2",
        "zone_id": None,
    }
    assert "abc123def456" in output
    assert "t" * 64 in output


@pytest.mark.asyncio
async def test_show_outputs_json(monkeypatch, capsys):
    async def fake_fetch(base_url, admin_token, tenant_id):
        assert tenant_id == TENANT["id"]
        return TENANT

    monkeypatch.setattr(admin, "fetch_tenant", fake_fetch)

    await admin.run(admin.parse_args([*BASE, "--json", "show", TENANT["id"]]))
    payload = json.loads(capsys.readouterr().out)
    assert payload["bucket_name"] == TENANT["bucket_name"]


@pytest.mark.asyncio
async def test_suspend_and_rotate_use_tenant_actions(monkeypatch, capsys):
    actions = []

    async def fake_action(base_url, admin_token, tenant_id, action):
        actions.append((tenant_id, action))
        if action == "tokens":
            return {"token": "n" * 64, "tenant_id": tenant_id}
        return {"success": True}

    monkeypatch.setattr(admin, "tenant_action", fake_action)

    await admin.run(admin.parse_args([*BASE, "suspend", "abc123def456"]))
    await admin.run(admin.parse_args([*BASE, "rotate-token", "abc123def456"]))
    output = capsys.readouterr().out
    assert actions == [("abc123def456", "suspend"), ("abc123def456", "tokens")]
    assert "suspend abc123def456: ok" in output
    assert "n" * 64 in output


@pytest.mark.asyncio
async def test_revoke_token(monkeypatch, capsys):
    revoked = []

    async def fake_revoke(base_url, admin_token, token):
        revoked.append(token)

    monkeypatch.setattr(admin, "revoke_token", fake_revoke)

    await admin.run(admin.parse_args([*BASE, "revoke-token", "r" * 64]))
    assert revoked == ["r" * 64]
    assert "token revoked" in capsys.readouterr().out
