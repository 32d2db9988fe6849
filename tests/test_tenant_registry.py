from __future__ import annotations

import threading

import pytest

from keyvalue.common.errors import ProvisioningError
from keyvalue.common.schemas import TenantStatus
from keyvalue.storage.base import StorageError
from keyvalue.storage.memory import InMemoryObjectStore
from keyvalue.tenants import InMemoryTenantRepository, TenantRegistry
from keyvalue.tenants.repository import ReadWriteLock


class FailingNamespaceStore(InMemoryObjectStore):
    async def create_namespace(self, namespace: str, tenant_id: str, zone_id: str) -> None:
        raise StorageError("bucket quota exceeded")


@pytest.mark.asyncio
async def test_provision_creates_namespace_and_token(registry, store):
    result = await registry.provision()
    tenant = result.tenant

    assert tenant.status == TenantStatus.ACTIVE
    assert tenant.region == "us-east-1"
    assert tenant.zone_id == "use1-az4"
    assert tenant.bucket_name == f"keyvalue-{tenant.id}--use1-az4--x-s3"
    assert store.namespace_tags(tenant.bucket_name)["tenant_id"] == tenant.id
    assert result.token.tenant_id == tenant.id
    assert len(result.token.token) == 64
    assert registry.lookup_by_token(result.token.token).id == tenant.id
    assert registry.lookup_by_id(tenant.id) == tenant


@pytest.mark.asyncio
async def test_provision_honours_region_and_zone(registry):
    result = await registry.provision(region="us-west-2", zone_id="usw2-az1")
    assert result.tenant.region == "us-west-2"
    assert result.tenant.bucket_name.endswith("--usw2-az1--x-s3")


@pytest.mark.asyncio
async def test_provision_failure_registers_nothing():
    repository = InMemoryTenantRepository()
    registry = TenantRegistry(
        repository, FailingNamespaceStore(), default_region="us-east-1", default_zone_id="use1-az4"
    )
    with pytest.raises(ProvisioningError):
        await registry.provision()
    assert repository.list_tenants() == []


@pytest.mark.asyncio
async def test_provisioned_tenants_get_distinct_tokens(registry):
    first = await registry.provision()
    second = await registry.provision()
    assert first.tenant.id != second.tenant.id
    assert first.token.token != second.token.token
    assert registry.lookup_by_token(first.token.token).id == first.tenant.id
    assert registry.lookup_by_token(second.token.token).id == second.tenant.id


@pytest.mark.asyncio
async def test_suspend_and_reactivate_are_idempotent(registry, seeded):
    tenant_id = "tenanta00001"
    assert registry.suspend(tenant_id) is True
    assert registry.suspend(tenant_id) is True
    assert registry.is_active(registry.lookup_by_id(tenant_id)) is False

    assert registry.reactivate(tenant_id) is True
    assert registry.reactivate(tenant_id) is True
    assert registry.is_active(registry.lookup_by_id(tenant_id)) is True


def test_status_changes_on_unknown_tenant_return_false(registry):
    assert registry.suspend("missing") is False
    assert registry.reactivate("missing") is False


def test_lookup_unknown_returns_none(registry):
    assert registry.lookup_by_id("nobody") is None
    assert registry.lookup_by_token("not-a-token") is None


@pytest.mark.asyncio
async def test_lookups_return_copies(registry, seeded):
    tenant = registry.lookup_by_id("tenanta00001")
    tenant.status = TenantStatus.SUSPENDED
    assert registry.lookup_by_id("tenanta00001").status == TenantStatus.ACTIVE


@pytest.mark.asyncio
async def test_issue_and_revoke_token(registry, seeded):
    issued = registry.issue_token("tenantb00002")
    assert issued is not None
    assert registry.lookup_by_token(issued.token).id == "tenantb00002"
    assert registry.lookup_by_token("b" * 64).id == "tenantb00002"

    assert registry.revoke_token(issued.token) is True
    assert registry.lookup_by_token(issued.token) is None
    assert registry.revoke_token(issued.token) is False
    assert registry.lookup_by_token("b" * 64) is not None


def test_issue_token_for_unknown_tenant(registry):
    assert registry.issue_token("missing") is None


def test_read_write_lock_allows_concurrent_readers():
    lock = ReadWriteLock()
    second_reader_in = threading.Event()

    def reader():
        with lock.read():
            second_reader_in.set()

    with lock.read():
        thread = threading.Thread(target=reader)
        thread.start()
        assert second_reader_in.wait(timeout=2.0)
    thread.join(timeout=2.0)


def test_read_write_lock_writer_excludes_readers():
    lock = ReadWriteLock()
    reader_in = threading.Event()

    def reader():
        with lock.read():
            reader_in.set()

    with lock.write():
        thread = threading.Thread(target=reader)
        thread.start()
        assert not reader_in.wait(timeout=0.2)
    assert reader_in.wait(timeout=2.0)
    thread.join(timeout=2.0)
