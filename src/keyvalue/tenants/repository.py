"""Tenant and token persistence."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import Column, DateTime, Index, MetaData, String, Table, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

from ..common.schemas import Tenant, TenantStatus, TenantToken


class ReadWriteLock:
    """Many concurrent readers, one exclusive writer, writers preferred."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class TenantRepository:
    """Storage seam for tenant records and their API tokens."""

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:  # pragma: no cover - interface
        raise NotImplementedError

    def get_by_token(self, token: str) -> Optional[Tenant]:  # pragma: no cover - interface
        raise NotImplementedError

    def upsert(self, tenant: Tenant) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def add_token(self, token: TenantToken) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def remove_token(self, token: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def tokens_for(self, tenant_id: str) -> list[TenantToken]:  # pragma: no cover - interface
        raise NotImplementedError

    def list_tenants(self) -> list[Tenant]:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryTenantRepository(TenantRepository):
    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}
        self._tokens: dict[str, TenantToken] = {}
        self._lock = ReadWriteLock()

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        with self._lock.read():
            tenant = self._tenants.get(tenant_id)
        return tenant.model_copy() if tenant else None

    def get_by_token(self, token: str) -> Optional[Tenant]:
        with self._lock.read():
            record = self._tokens.get(token)
            tenant = self._tenants.get(record.tenant_id) if record else None
        return tenant.model_copy() if tenant else None

    def upsert(self, tenant: Tenant) -> None:
        with self._lock.write():
            self._tenants[tenant.id] = tenant.model_copy()

    def add_token(self, token: TenantToken) -> None:
        with self._lock.write():
            if token.tenant_id not in self._tenants:
                raise KeyError(token.tenant_id)
            self._tokens[token.token] = token

    def remove_token(self, token: str) -> bool:
        with self._lock.write():
            return self._tokens.pop(token, None) is not None

    def tokens_for(self, tenant_id: str) -> list[TenantToken]:
        with self._lock.read():
            return [record for record in self._tokens.values() if record.tenant_id == tenant_id]

    def list_tenants(self) -> list[Tenant]:
        with self._lock.read():
            return [tenant.model_copy() for tenant in self._tenants.values()]


metadata = MetaData()

tenants_table = Table(
    "tenants",
    metadata,
    Column("tenant_id", String(length=64), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("region", String(length=64), nullable=False),
    Column("zone_id", String(length=64), nullable=False),
    Column("bucket_name", String(length=255), nullable=False, unique=True),
    Column("status", String(length=16), nullable=False),
)

tenant_tokens_table = Table(
    "tenant_tokens",
    metadata,
    Column("token", String(length=128), primary_key=True),
    Column("tenant_id", String(length=64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_tenant_tokens_tenant", "tenant_id"),
)


class SqlTenantRepository(TenantRepository):
    """Durable repository on any SQLAlchemy-supported database."""

    def __init__(self, database_url: str):
        self._engine = self._create_engine(database_url)
        metadata.create_all(self._engine)

    @staticmethod
    def _create_engine(database_url: str) -> Engine:
        url = make_url(database_url)
        if url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:"):
            return create_engine(
                url,
                future=True,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        if url.drivername.startswith("sqlite"):
            db_path = Path(url.database).expanduser()
            if not db_path.is_absolute():
                db_path = (Path.cwd() / db_path).resolve()
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = url.set(database=db_path.as_posix())
        return create_engine(url, future=True, pool_pre_ping=True)

    @staticmethod
    def _tenant_from_row(row) -> Tenant:
        return Tenant(
            id=row["tenant_id"],
            created_at=row["created_at"],
            region=row["region"],
            zone_id=row["zone_id"],
            bucket_name=row["bucket_name"],
            status=TenantStatus(row["status"]),
        )

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(tenants_table).where(tenants_table.c.tenant_id == tenant_id)
            ).mappings().first()
        return self._tenant_from_row(row) if row else None

    def get_by_token(self, token: str) -> Optional[Tenant]:
        query = (
            select(tenants_table)
            .join(tenant_tokens_table, tenant_tokens_table.c.tenant_id == tenants_table.c.tenant_id)
            .where(tenant_tokens_table.c.token == token)
        )
        with self._engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return self._tenant_from_row(row) if row else None

    def upsert(self, tenant: Tenant) -> None:
        values = {
            "created_at": tenant.created_at,
            "region": tenant.region,
            "zone_id": tenant.zone_id,
            "bucket_name": tenant.bucket_name,
            "status": tenant.status.value,
        }
        with self._engine.begin() as conn:
            updated = conn.execute(
                tenants_table.update().where(tenants_table.c.tenant_id == tenant.id).values(**values)
            )
            if updated.rowcount == 0:
                conn.execute(tenants_table.insert().values(tenant_id=tenant.id, **values))

    def add_token(self, token: TenantToken) -> None:
        with self._engine.begin() as conn:
            exists = conn.execute(
                select(tenants_table.c.tenant_id).where(tenants_table.c.tenant_id == token.tenant_id)
            ).first()
            if exists is None:
                raise KeyError(token.tenant_id)
            conn.execute(
                tenant_tokens_table.insert().values(
                    token=token.token,
                    tenant_id=token.tenant_id,
                    created_at=token.created_at,
                )
            )

    def remove_token(self, token: str) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(delete(tenant_tokens_table).where(tenant_tokens_table.c.token == token))
        return result.rowcount > 0

    def tokens_for(self, tenant_id: str) -> list[TenantToken]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(tenant_tokens_table).where(tenant_tokens_table.c.tenant_id == tenant_id)
            ).mappings().all()
        return [TenantToken(token=row["token"], tenant_id=row["tenant_id"], created_at=row["created_at"]) for row in rows]

    def list_tenants(self) -> list[Tenant]:
        with self._engine.connect() as conn:
            rows = conn.execute(select(tenants_table).order_by(tenants_table.c.created_at)).mappings().all()
        return [self._tenant_from_row(row) for row in rows]

    def dispose(self) -> None:
        self._engine.dispose()
