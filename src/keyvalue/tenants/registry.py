"""Tenant lifecycle: provisioning, lookup, suspension and token rotation."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from ..common.errors import ProvisioningError
from ..common.keys import bucket_name, generate_tenant_id, generate_token, logging_hash
from ..common.schemas import ProvisioningResult, Tenant, TenantStatus, TenantToken, utc_now
from ..storage.base import ObjectStore, StorageError
from .repository import TenantRepository

LOGGER = structlog.get_logger("keyvalue.tenants")


class TenantRegistry:
    def __init__(
        self,
        repository: TenantRepository,
        store: ObjectStore,
        *,
        default_region: str,
        default_zone_id: str,
        bucket_prefix: str = "keyvalue",
    ):
        self._repository = repository
        self._store = store
        self._default_region = default_region
        self._default_zone_id = default_zone_id
        self._bucket_prefix = bucket_prefix

    @property
    def repository(self) -> TenantRepository:
        return self._repository

    async def provision(self, region: Optional[str] = None, zone_id: Optional[str] = None) -> ProvisioningResult:
        """Create the tenant namespace, then register the tenant and its first token.

        Nothing is registered unless the namespace was created.
        """

        tenant_id = generate_tenant_id()
        effective_region = region or self._default_region
        effective_zone = zone_id or self._default_zone_id
        namespace = bucket_name(tenant_id, effective_zone, self._bucket_prefix)

        try:
            await self._store.create_namespace(namespace, tenant_id, effective_zone)
        except StorageError as exc:
            LOGGER.error("tenant_provisioning_failed", tenant_id=tenant_id, zone_id=effective_zone, detail=exc.detail)
            raise ProvisioningError(tenant_id, f"failed to create namespace for tenant {tenant_id}") from exc

        tenant = Tenant(
            id=tenant_id,
            created_at=utc_now(),
            region=effective_region,
            zone_id=effective_zone,
            bucket_name=namespace,
            status=TenantStatus.ACTIVE,
        )
        token = await asyncio.to_thread(self._register_new, tenant)
        LOGGER.info("tenant_provisioned", tenant_id=tenant_id, region=effective_region, zone_id=effective_zone)
        return ProvisioningResult(tenant=tenant, token=token)

    def register(self, tenant: Tenant, token: str) -> TenantToken:
        """Seed an existing tenant together with a known token."""

        self._repository.upsert(tenant)
        record = TenantToken(token=token, tenant_id=tenant.id, created_at=tenant.created_at)
        self._repository.add_token(record)
        return record

    def lookup_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return self._repository.get_by_id(tenant_id)

    def lookup_by_token(self, token: str) -> Optional[Tenant]:
        return self._repository.get_by_token(token)

    def suspend(self, tenant_id: str) -> bool:
        return self._set_status(tenant_id, TenantStatus.SUSPENDED)

    def reactivate(self, tenant_id: str) -> bool:
        return self._set_status(tenant_id, TenantStatus.ACTIVE)

    @staticmethod
    def is_active(tenant: Tenant) -> bool:
        return tenant.status == TenantStatus.ACTIVE

    def issue_token(self, tenant_id: str) -> Optional[TenantToken]:
        if self._repository.get_by_id(tenant_id) is None:
            return None
        token = self._issue(tenant_id)
        LOGGER.info("tenant_token_issued", tenant_id=tenant_id, token_hash=logging_hash(token.token))
        return token

    def revoke_token(self, token: str) -> bool:
        """Hard-delete a token; later requests carrying it are unauthorized."""

        removed = self._repository.remove_token(token)
        if removed:
            LOGGER.info("tenant_token_revoked", token_hash=logging_hash(token))
        return removed

    def _register_new(self, tenant: Tenant) -> TenantToken:
        self._repository.upsert(tenant)
        return self._issue(tenant.id)

    def _issue(self, tenant_id: str) -> TenantToken:
        record = TenantToken(token=generate_token(), tenant_id=tenant_id, created_at=utc_now())
        self._repository.add_token(record)
        return record

    def _set_status(self, tenant_id: str, target: TenantStatus) -> bool:
        tenant = self._repository.get_by_id(tenant_id)
        if tenant is None:
            return False
        if tenant.status != target:
            self._repository.upsert(tenant.model_copy(update={"status": target}))
            LOGGER.info("tenant_status_changed", tenant_id=tenant_id, status=target.value)
        return True
