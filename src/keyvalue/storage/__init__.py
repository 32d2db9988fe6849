"""Object store adapters."""

from __future__ import annotations

from ..common.settings import GatewaySettings
from .base import (
    ObjectMetadata,
    ObjectNotFound,
    ObjectStore,
    PreconditionConflict,
    StorageError,
    StoredObject,
    StoreErrorKind,
)
from .local import LocalObjectStore
from .memory import InMemoryObjectStore


def build_store(settings: GatewaySettings) -> ObjectStore:
    if settings.storage_backend == "s3":
        from .s3 import S3ObjectStore

        return S3ObjectStore(settings)
    if settings.storage_backend == "local":
        return LocalObjectStore(settings.storage_path)
    return InMemoryObjectStore()


__all__ = [
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectMetadata",
    "ObjectNotFound",
    "ObjectStore",
    "PreconditionConflict",
    "StorageError",
    "StoredObject",
    "StoreErrorKind",
    "build_store",
]
