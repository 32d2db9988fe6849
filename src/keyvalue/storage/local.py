"""Object store persisting namespaces as directories on local disk."""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import re
import threading
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .base import (
    ObjectMetadata,
    ObjectNotFound,
    ObjectStore,
    StorageError,
    StoredObject,
    check_preconditions,
)

_SHARDED_KEY = re.compile(r"^h/([0-9a-f]{2})/(.*)$", re.DOTALL)
_MAX_FILENAME = 200


def sanitize_path(storage_dir: Path, *parts: str) -> Path:
    root = storage_dir.resolve()
    resolved = root.joinpath(*parts).resolve(strict=False)
    if not resolved.is_relative_to(root):
        raise StorageError("path escapes storage root")
    return resolved


class LocalObjectStore(ObjectStore):
    """Directory-per-namespace store.

    Objects live at ``<root>/<namespace>/h/<prefix>/k_<quoted key>`` with a
    JSON sidecar ``m_<quoted key>`` holding content type, etag and user
    metadata. Names too long for the filesystem are stored under their
    SHA-256 digest instead. Reads, writes and deletes are serialized within
    this process only, so concurrent processes sharing a directory can race.
    """

    name = "local"

    def __init__(self, storage_path: Path):
        self._root = Path(storage_path)
        self._lock = threading.Lock()

    def _namespace_dir(self, namespace: str) -> Path:
        path = sanitize_path(self._root, quote(namespace, safe=""))
        if not path.is_dir():
            raise StorageError(f"namespace {namespace} does not exist")
        return path

    def _paths(self, namespace: str, key: str) -> tuple[Path, Path]:
        base = self._namespace_dir(namespace)
        match = _SHARDED_KEY.match(key)
        if match:
            directory = base / "h" / match.group(1)
            name = match.group(2)
        else:
            directory = base
            name = key
        encoded = quote(name, safe="")
        if len(encoded) > _MAX_FILENAME:
            digest = hashlib.sha256(name.encode("utf-8")).hexdigest()
            return directory / f"d_{digest}", directory / f"n_{digest}"
        return directory / f"k_{encoded}", directory / f"m_{encoded}"

    async def create_namespace(self, namespace: str, tenant_id: str, zone_id: str) -> None:
        await asyncio.to_thread(self._create_namespace, namespace, tenant_id, zone_id)

    def _create_namespace(self, namespace: str, tenant_id: str, zone_id: str) -> None:
        path = sanitize_path(self._root, quote(namespace, safe=""))
        try:
            path.mkdir(parents=True, exist_ok=False)
        except FileExistsError as exc:
            raise StorageError(f"namespace {namespace} already exists") from exc
        except OSError as exc:
            raise StorageError(f"failed to create namespace {namespace}: {exc}") from exc
        tags = {"tenant_id": tenant_id, "zone_id": zone_id, "service": "keyvalue"}
        (path / ".tags.json").write_text(json.dumps(tags), encoding="utf-8")

    def _read_info(self, meta_path: Path) -> ObjectMetadata:
        try:
            raw = json.loads(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ObjectNotFound() from exc
        except (OSError, ValueError) as exc:
            raise StorageError(f"unreadable metadata: {exc}") from exc
        return ObjectMetadata(
            etag=raw["etag"],
            content_type=raw["content_type"],
            content_length=int(raw["content_length"]),
            metadata=dict(raw.get("metadata") or {}),
        )

    def _head(self, namespace: str, key: str) -> ObjectMetadata:
        _, meta_path = self._paths(namespace, key)
        with self._lock:
            return self._read_info(meta_path)

    def _get(self, namespace: str, key: str) -> StoredObject:
        data_path, meta_path = self._paths(namespace, key)
        # Body and sidecar are replaced one after the other; read both under the writer lock.
        with self._lock:
            info = self._read_info(meta_path)
            try:
                body = data_path.read_bytes()
            except FileNotFoundError as exc:
                raise ObjectNotFound() from exc
            except OSError as exc:
                raise StorageError(f"failed to read object: {exc}") from exc
        return StoredObject(body=body, info=info)

    def _put(
        self,
        namespace: str,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]],
        if_match: Optional[str],
        if_none_match: Optional[str],
    ) -> ObjectMetadata:
        data_path, meta_path = self._paths(namespace, key)
        info = ObjectMetadata(
            etag=hashlib.md5(body).hexdigest(),
            content_type=content_type,
            content_length=len(body),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            try:
                current: Optional[ObjectMetadata] = self._read_info(meta_path)
            except ObjectNotFound:
                current = None
            check_preconditions(current, if_match=if_match, if_none_match=if_none_match)
            try:
                data_path.parent.mkdir(parents=True, exist_ok=True)
                _atomic_write(data_path, body)
                _atomic_write(
                    meta_path,
                    json.dumps(
                        {
                            "etag": info.etag,
                            "content_type": info.content_type,
                            "content_length": info.content_length,
                            "metadata": info.metadata,
                        }
                    ).encode("utf-8"),
                )
            except OSError as exc:
                raise StorageError(f"failed to write object: {exc}") from exc
        return info

    def _delete(self, namespace: str, key: str) -> None:
        data_path, meta_path = self._paths(namespace, key)
        root = self._namespace_dir(namespace)
        with self._lock:
            meta_path.unlink(missing_ok=True)
            data_path.unlink(missing_ok=True)
            parent = data_path.parent
            while parent != root and parent.exists():
                try:
                    parent.rmdir()
                except OSError:
                    break
                parent = parent.parent

    async def get(self, namespace: str, key: str) -> StoredObject:
        return await asyncio.to_thread(self._get, namespace, key)

    async def head(self, namespace: str, key: str) -> ObjectMetadata:
        return await asyncio.to_thread(self._head, namespace, key)

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
        return await asyncio.to_thread(
            self._put, namespace, key, body, content_type, metadata, if_match, if_none_match
        )

    async def delete(self, namespace: str, key: str) -> None:
        await asyncio.to_thread(self._delete, namespace, key)

    def status(self) -> dict[str, object]:
        self._root.mkdir(parents=True, exist_ok=True)
        return {
            "backend": self.name,
            "storage_path": str(self._root),
            "writable": os.access(self._root, os.W_OK),
        }


def _atomic_write(path: Path, payload: bytes) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    with tmp_path.open("wb") as file_obj:
        file_obj.write(payload)
    os.replace(tmp_path, path)
