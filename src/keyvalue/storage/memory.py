"""In-process object store used for development and tests."""

from __future__ import annotations

import hashlib
import threading
from typing import Optional

from .base import (
    ObjectMetadata,
    ObjectNotFound,
    ObjectStore,
    StorageError,
    StoredObject,
    check_preconditions,
)


class InMemoryObjectStore(ObjectStore):
    name = "memory"

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, StoredObject]] = {}
        self._tags: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def _bucket(self, namespace: str) -> dict[str, StoredObject]:
        try:
            return self._namespaces[namespace]
        except KeyError as exc:
            raise StorageError(f"namespace {namespace} does not exist") from exc

    async def create_namespace(self, namespace: str, tenant_id: str, zone_id: str) -> None:
        with self._lock:
            if namespace in self._namespaces:
                raise StorageError(f"namespace {namespace} already exists")
            self._namespaces[namespace] = {}
            self._tags[namespace] = {"tenant_id": tenant_id, "zone_id": zone_id, "service": "keyvalue"}

    def namespace_tags(self, namespace: str) -> dict[str, str]:
        return dict(self._tags.get(namespace, {}))

    async def get(self, namespace: str, key: str) -> StoredObject:
        with self._lock:
            stored = self._bucket(namespace).get(key)
        if stored is None:
            raise ObjectNotFound()
        return stored

    async def head(self, namespace: str, key: str) -> ObjectMetadata:
        return (await self.get(namespace, key)).info

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
    ) -> ObjectMetadata:
        info = ObjectMetadata(
            etag=hashlib.md5(body).hexdigest(),
            content_type=content_type,
            content_length=len(body),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            bucket = self._bucket(namespace)
            current = bucket.get(key)
            check_preconditions(
                current.info if current else None,
                if_match=if_match,
                if_none_match=if_none_match,
            )
            bucket[key] = StoredObject(body=bytes(body), info=info)
        return info

    async def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._bucket(namespace).pop(key, None)

    def status(self) -> dict[str, object]:
        return {"backend": self.name, "namespaces": len(self._namespaces), "writable": True}
