from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from keyvalue.common.schemas import RequestMetrics, Tenant, TenantStatus
from keyvalue.common.settings import GatewaySettings
from keyvalue.gateway.app import create_app
from keyvalue.gateway.request_metrics import RequestMetricsHook
from keyvalue.storage.memory import InMemoryObjectStore
from keyvalue.tenants import InMemoryTenantRepository, TenantRegistry

ADMIN_TOKEN = "admin-secret"
METRICS_TOKEN = "metrics-secret"
SEED_TENANTS = (("tenanta00001", "a" * 64), ("tenantb00002", "b" * 64))


class RecordingMetricsHook(RequestMetricsHook):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[RequestMetrics] = []

    def emit(self, record: RequestMetrics) -> None:
        self.records.append(record)
        super().emit(record)


def make_tenant(tenant_id: str, status: TenantStatus = TenantStatus.ACTIVE) -> Tenant:
    return Tenant(
        id=tenant_id,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        region="us-east-1",
        zone_id="use1-az4",
        bucket_name=f"keyvalue-{tenant_id}--use1-az4--x-s3",
        status=status,
    )


def seed_tenants(registry: TenantRegistry, store: InMemoryObjectStore) -> dict[str, Tenant]:
    tenants = {}
    for tenant_id, token in SEED_TENANTS:
        tenant = make_tenant(tenant_id)
        asyncio.run(store.create_namespace(tenant.bucket_name, tenant.id, tenant.zone_id))
        registry.register(tenant, token)
        tenants[token] = tenant
    return tenants


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        storage_backend="memory",
        admin_token=ADMIN_TOKEN,
        metrics_token=METRICS_TOKEN,
        max_object_size=64,
        request_timeout_seconds=5.0,
        otel_sampler_ratio=1.0,
        log_level="WARNING",
    )


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def repository() -> InMemoryTenantRepository:
    return InMemoryTenantRepository()


@pytest.fixture
def registry(repository, store) -> TenantRegistry:
    return TenantRegistry(repository, store, default_region="us-east-1", default_zone_id="use1-az4")


@pytest.fixture
def metrics_hook() -> RecordingMetricsHook:
    return RecordingMetricsHook()


@pytest_asyncio.fixture
async def seeded(registry, store) -> dict[str, Tenant]:
    tenants = {}
    for tenant_id, token in SEED_TENANTS:
        tenant = make_tenant(tenant_id)
        await store.create_namespace(tenant.bucket_name, tenant.id, tenant.zone_id)
        registry.register(tenant, token)
        tenants[tenant_id] = tenant
    return tenants


@pytest.fixture
def app(settings, store, repository):
    return create_app(settings, store=store, repository=repository)


@pytest.fixture
def client(app, store):
    seed_tenants(app.state.gateway_state.registry, store)
    with TestClient(app) as test_client:
        yield test_client
