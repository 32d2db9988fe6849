from __future__ import annotations

from datetime import UTC, datetime

import pytest

from keyvalue.common.schemas import TenantStatus, TenantToken
from keyvalue.tenants import SqlTenantRepository

from conftest import make_tenant


@pytest.fixture
def sql_repository(tmp_path):
    repository = SqlTenantRepository(f"sqlite+pysqlite:///{(tmp_path / 'tenants.db').as_posix()}")
    try:
        yield repository
    finally:
        repository.dispose()


def test_upsert_and_lookup(sql_repository):
    tenant = make_tenant("sqltenant001")
    sql_repository.upsert(tenant)
    sql_repository.add_token(TenantToken(token="t" * 64, tenant_id=tenant.id, created_at=datetime.now(UTC)))

    by_id = sql_repository.get_by_id(tenant.id)
    by_token = sql_repository.get_by_token("t" * 64)
    assert by_id is not None and by_token is not None
    assert by_id.bucket_name == tenant.bucket_name
    assert by_token.id == tenant.id
    assert by_token.status == TenantStatus.ACTIVE


def test_upsert_updates_status(sql_repository):
    tenant = make_tenant("sqltenant002")
    sql_repository.upsert(tenant)
    sql_repository.upsert(tenant.model_copy(update={"status": TenantStatus.SUSPENDED}))
    assert sql_repository.get_by_id(tenant.id).status == TenantStatus.SUSPENDED
    assert len(sql_repository.list_tenants()) == 1


def test_token_for_unknown_tenant_rejected(sql_repository):
    with pytest.raises(KeyError):
        sql_repository.add_token(TenantToken(token="x" * 64, tenant_id="ghost"))


def test_remove_token(sql_repository):
    tenant = make_tenant("sqltenant003")
    sql_repository.upsert(tenant)
    sql_repository.add_token(TenantToken(token="r" * 64, tenant_id=tenant.id))
    assert [record.token for record in sql_repository.tokens_for(tenant.id)] == ["r" * 64]

    assert sql_repository.remove_token("r" * 64) is True
    assert sql_repository.remove_token("r" * 64) is False
    assert sql_repository.get_by_token("r" * 64) is None


def test_in_memory_url_shares_one_database():
    repository = SqlTenantRepository("sqlite+pysqlite:///:memory:")
    tenant = make_tenant("memtenant001")
    repository.upsert(tenant)
    assert repository.get_by_id(tenant.id) is not None
    repository.dispose()


def test_repository_persists_across_instances(tmp_path):
    url = f"sqlite+pysqlite:///{(tmp_path / 'durable.db').as_posix()}"
    first = SqlTenantRepository(url)
    first.upsert(make_tenant("durable00001"))
    first.dispose()

    second = SqlTenantRepository(url)
    assert second.get_by_id("durable00001") is not None
    second.dispose()
