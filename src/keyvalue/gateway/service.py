"""Protocol logic for tenant-scoped GET/PUT/DELETE/HEAD."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

import structlog
from fastapi import status
from opentelemetry import trace

from ..common.errors import (
    InternalError,
    KeyTooLongError,
    KVError,
    NotFoundError,
    ObjectTooLargeError,
    PreconditionFailedError,
)
from ..common.keys import key_byte_length, logging_hash, physical_key
from ..common.observability import request_log_context
from ..common.schemas import KVMetadata, Operation, PutResult, Tenant, utc_now
from ..storage.base import (
    ObjectMetadata,
    ObjectNotFound,
    ObjectStore,
    PreconditionConflict,
    StorageError,
    unquote_etag,
)
from .request_metrics import RequestMetricsHook

LOGGER = structlog.get_logger("keyvalue.gateway")
TRACER = trace.get_tracer("keyvalue.gateway")

CLIENT_CLOSED_REQUEST = 499
DEFAULT_CONTENT_TYPE = "application/octet-stream"
CREATED_AT_METADATA = "created-at"

T = TypeVar("T")
Body = Union[bytes, AsyncIterator[bytes]]


@dataclass
class KVResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    payload: Optional[dict] = None


@dataclass
class _Outcome:
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    object_size: Optional[int] = None


def project_metadata(info: ObjectMetadata) -> KVMetadata:
    return KVMetadata(
        etag=info.etag,
        content_type=info.content_type or DEFAULT_CONTENT_TYPE,
        content_length=info.content_length,
        created_at=info.metadata.get(CREATED_AT_METADATA),
    )


def metadata_headers(meta: KVMetadata) -> dict[str, str]:
    headers = {
        "Content-Type": meta.content_type,
        "Content-Length": str(meta.content_length),
        "ETag": f'"{meta.etag}"',
    }
    if meta.created_at:
        headers["X-Created-At"] = meta.created_at
    return headers


class KVGateway:
    """Executes KV operations for an already authenticated tenant.

    Every call records exactly one metrics entry, whatever the outcome.
    Failures surface as :class:`KVError` subclasses; unexpected backend
    errors and timeouts collapse to :class:`InternalError`.
    """

    def __init__(
        self,
        store: ObjectStore,
        metrics: RequestMetricsHook,
        *,
        max_key_length: int = 1024,
        max_object_size: int = 10 * 1024 * 1024,
        request_timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._metrics = metrics
        self._max_key_length = max_key_length
        self._max_object_size = max_object_size
        self._timeout = request_timeout_seconds if request_timeout_seconds and request_timeout_seconds > 0 else None
        self._clock = clock

    async def get(self, tenant: Tenant, key: str) -> KVResponse:
        async def handler(outcome: _Outcome) -> KVResponse:
            try:
                stored = await self._call(self._store.get(tenant.bucket_name, physical_key(key)))
            except ObjectNotFound as exc:
                raise NotFoundError() from exc
            meta = project_metadata(stored.info)
            outcome.object_size = meta.content_length
            return KVResponse(status.HTTP_200_OK, headers=metadata_headers(meta), body=stored.body)

        return await self._run(tenant, "GET", key, handler)

    async def head(self, tenant: Tenant, key: str) -> KVResponse:
        async def handler(outcome: _Outcome) -> KVResponse:
            try:
                info = await self._call(self._store.head(tenant.bucket_name, physical_key(key)))
            except ObjectNotFound as exc:
                raise NotFoundError() from exc
            meta = project_metadata(info)
            outcome.object_size = meta.content_length
            return KVResponse(status.HTTP_200_OK, headers=metadata_headers(meta))

        return await self._run(tenant, "HEAD", key, handler)

    async def put(
        self,
        tenant: Tenant,
        key: str,
        body: Body,
        content_type: Optional[str] = None,
        *,
        if_match: Optional[str] = None,
        if_none_match: Optional[str] = None,
        declared_length: Optional[int] = None,
    ) -> KVResponse:
        """Store ``body`` under ``key``.

        The key length is checked before any of the body is consumed. A
        streamed body is read only up to the size limit. ``If-None-Match: *``
        turns the write into create-only (201, or 412 when the key exists);
        ``If-Match`` requires the current etag to match.
        """

        async def handler(outcome: _Outcome) -> KVResponse:
            if key_byte_length(key) > self._max_key_length:
                raise KeyTooLongError()
            if declared_length is not None and declared_length > self._max_object_size:
                outcome.object_size = declared_length
                raise ObjectTooLargeError()
            value = await self._read_body(body, outcome)
            outcome.object_size = len(value)

            namespace = tenant.bucket_name
            object_key = physical_key(key)
            expected_etag = unquote_etag(if_match) if if_match else None
            create_only = if_none_match == "*"

            if if_match or if_none_match:
                try:
                    current: Optional[ObjectMetadata] = await self._call(self._store.head(namespace, object_key))
                except ObjectNotFound:
                    current = None
                if create_only and current is not None:
                    raise PreconditionFailedError("Object already exists")
                if expected_etag is not None and (current is None or current.etag != expected_etag):
                    raise PreconditionFailedError()

            try:
                info = await self._call(
                    self._store.put(
                        namespace,
                        object_key,
                        value,
                        content_type or DEFAULT_CONTENT_TYPE,
                        {CREATED_AT_METADATA: self._timestamp()},
                        if_match=expected_etag,
                        if_none_match="*" if create_only else None,
                    )
                )
            except PreconditionConflict as exc:
                raise PreconditionFailedError() from exc

            status_code = status.HTTP_201_CREATED if create_only else status.HTTP_200_OK
            return KVResponse(
                status_code,
                headers={"ETag": f'"{info.etag}"'},
                payload=PutResult(etag=info.etag).model_dump(),
            )

        return await self._run(tenant, "PUT", key, handler)

    async def delete(self, tenant: Tenant, key: str) -> KVResponse:
        """Delete ``key`` after confirming it exists.

        The existence check and the delete are separate store calls, so two
        concurrent deleters can both observe the object; the loser gets
        whatever the store reports for the second call.
        """

        async def handler(outcome: _Outcome) -> KVResponse:
            namespace = tenant.bucket_name
            object_key = physical_key(key)
            try:
                await self._call(self._store.head(namespace, object_key))
                await self._call(self._store.delete(namespace, object_key))
            except ObjectNotFound as exc:
                raise NotFoundError() from exc
            return KVResponse(status.HTTP_204_NO_CONTENT)

        return await self._run(tenant, "DELETE", key, handler)

    async def _run(
        self,
        tenant: Tenant,
        operation: Operation,
        key: str,
        handler: Callable[[_Outcome], Awaitable[KVResponse]],
    ) -> KVResponse:
        key_hash = logging_hash(key)
        collector = self._metrics.start_timer(tenant.id, operation)
        outcome = _Outcome()
        attributes = {"keyvalue.operation": operation, "keyvalue.key_hash": key_hash, "keyvalue.tenant_id": tenant.id}
        with request_log_context(tenant.id, operation, key_hash), TRACER.start_as_current_span(
            f"kv.{operation.lower()}", attributes=attributes
        ) as span:
            try:
                if not key:
                    raise NotFoundError()
                response = await handler(outcome)
                outcome.status_code = response.status_code
                return response
            except KVError as exc:
                outcome.status_code = exc.status_code
                raise
            except asyncio.CancelledError:
                outcome.status_code = CLIENT_CLOSED_REQUEST
                LOGGER.info("kv_request_cancelled", tenant_id=tenant.id, operation=operation, key_hash=key_hash)
                raise
            except asyncio.TimeoutError as exc:
                LOGGER.error("storage_timeout", tenant_id=tenant.id, operation=operation, key_hash=key_hash)
                raise InternalError() from exc
            except StorageError as exc:
                LOGGER.error(
                    "storage_error",
                    tenant_id=tenant.id,
                    operation=operation,
                    key_hash=key_hash,
                    error_kind=exc.kind.value,
                    detail=exc.detail,
                )
                raise InternalError() from exc
            except Exception as exc:  # noqa: BLE001 - every backend failure becomes a 500
                LOGGER.error(
                    "storage_error",
                    tenant_id=tenant.id,
                    operation=operation,
                    key_hash=key_hash,
                    error_kind=type(exc).__name__,
                )
                raise InternalError() from exc
            finally:
                span.set_attribute("http.status_code", outcome.status_code)
                collector.finish(outcome.status_code, key_hash, outcome.object_size)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def _read_body(self, body: Body, outcome: _Outcome) -> bytes:
        if isinstance(body, (bytes, bytearray, memoryview)):
            value = bytes(body)
            if len(value) > self._max_object_size:
                outcome.object_size = len(value)
                raise ObjectTooLargeError()
            return value
        data = bytearray()
        async for chunk in body:
            data.extend(chunk)
            if len(data) > self._max_object_size:
                outcome.object_size = len(data)
                raise ObjectTooLargeError()
        return bytes(data)

    def _timestamp(self) -> str:
        return self._clock().isoformat()
