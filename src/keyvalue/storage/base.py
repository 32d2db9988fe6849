"""Object store adapter interface and typed failures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StoreErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    OTHER = "other"


class StorageError(Exception):
    """Backend failure that is neither a miss nor a precondition conflict."""

    kind = StoreErrorKind.OTHER

    def __init__(self, detail: str = "storage backend error"):
        self.detail = detail
        super().__init__(detail)


class ObjectNotFound(StorageError):
    kind = StoreErrorKind.NOT_FOUND

    def __init__(self, detail: str = "object not found"):
        super().__init__(detail)


class PreconditionConflict(StorageError):
    """The store refused a conditional write."""

    kind = StoreErrorKind.CONFLICT

    def __init__(self, detail: str = "precondition conflict"):
        super().__init__(detail)


@dataclass(frozen=True)
class ObjectMetadata:
    etag: str
    content_type: str
    content_length: int
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredObject:
    body: bytes
    info: ObjectMetadata


class ObjectStore:
    """Uniform async interface over a namespaced object backend.

    ``namespace`` is the tenant bucket name and ``key`` the physical key.
    Misses raise :class:`ObjectNotFound`; refused conditional writes raise
    :class:`PreconditionConflict`; everything else raises
    :class:`StorageError`.

    ``put`` accepts ``if_match`` (unquoted etag) and ``if_none_match`` (only
    ``"*"``) and enforces them in the same step as the write.
    """

    name = "abstract"

    async def create_namespace(self, namespace: str, tenant_id: str, zone_id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def get(self, namespace: str, key: str) -> StoredObject:  # pragma: no cover - interface
        raise NotImplementedError

    async def head(self, namespace: str, key: str) -> ObjectMetadata:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(
        self,
        namespace: str,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
        *,
        if_match: Optional[str] = None,
        if_none_match: Optional[str] = None,
    ) -> ObjectMetadata:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, namespace: str, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def status(self) -> dict[str, object]:
        return {"backend": self.name}


def unquote_etag(value: Optional[str]) -> str:
    return (value or "").replace('"', "")


def check_preconditions(
    current: Optional[ObjectMetadata],
    *,
    if_match: Optional[str],
    if_none_match: Optional[str],
) -> None:
    """Raise :class:`PreconditionConflict` when a conditional write must not proceed."""

    if if_none_match == "*" and current is not None:
        raise PreconditionConflict("object already exists")
    if if_match:
        if current is None:
            raise PreconditionConflict("object not found for If-Match")
        if current.etag != unquote_etag(if_match):
            raise PreconditionConflict("etag mismatch")
