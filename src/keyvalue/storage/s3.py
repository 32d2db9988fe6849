"""Object store backed by S3 Express One Zone directory buckets."""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import Callable, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..common.settings import GatewaySettings
from .base import (
    ObjectMetadata,
    ObjectNotFound,
    ObjectStore,
    PreconditionConflict,
    StorageError,
    StoredObject,
    unquote_etag,
)

LOGGER = structlog.get_logger("keyvalue.storage.s3")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_CONFLICT_CODES = {"412", "PreconditionFailed", "409", "ConditionalRequestConflict"}


class CircuitBreaker:
    def __init__(self, failure_threshold: int, reset_timeout: float):
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout = max(0.0, reset_timeout)
        self._failure_count = 0
        self._opened_at: float | None = None

    def _maybe_reset(self) -> None:
        if self._opened_at is None:
            return
        if time.monotonic() - self._opened_at >= self._reset_timeout:
            self._opened_at = None
            self._failure_count = 0

    def allow_request(self) -> bool:
        self._maybe_reset()
        return self._opened_at is None

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            self._opened_at = time.monotonic()

    @property
    def is_open(self) -> bool:
        self._maybe_reset()
        return self._opened_at is not None


def classify_client_error(exc: ClientError) -> StorageError:
    """Translate a botocore error into the adapter's typed failures."""

    error = exc.response.get("Error", {}) if isinstance(getattr(exc, "response", None), dict) else {}
    code = str(error.get("Code", ""))
    if code in _NOT_FOUND_CODES:
        return ObjectNotFound(code)
    if code in _CONFLICT_CODES:
        return PreconditionConflict(code)
    return StorageError(f"s3 error {code or 'unknown'}")


class S3ObjectStore(ObjectStore):
    name = "s3"

    def __init__(self, settings: GatewaySettings):
        self._settings = settings
        session = boto3.session.Session()
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.s3_endpoint_url,
            "region_name": settings.aws_region,
        }
        self._client = session.client("s3", **{k: v for k, v in client_args.items() if v})
        self._max_retries = max(0, settings.s3_max_retries)
        self._retry_base = max(0.0, settings.s3_retry_base_seconds)
        self._retry_max = max(self._retry_base, settings.s3_retry_max_seconds)
        self._breaker = CircuitBreaker(
            failure_threshold=max(1, settings.s3_circuit_breaker_failures),
            reset_timeout=max(0.0, settings.s3_circuit_breaker_reset_seconds),
        )

    async def create_namespace(self, namespace: str, tenant_id: str, zone_id: str) -> None:
        await self._call_with_retry(
            self._client.create_bucket,
            Bucket=namespace,
            CreateBucketConfiguration={
                "Location": {"Type": "AvailabilityZone", "Name": zone_id},
                "Bucket": {"Type": "Directory", "DataRedundancy": "SingleAvailabilityZone"},
            },
        )
        await self._call_with_retry(
            self._client.put_bucket_tagging,
            Bucket=namespace,
            Tagging={
                "TagSet": [
                    {"Key": "tenant_id", "Value": tenant_id},
                    {"Key": "service", "Value": "keyvalue"},
                    {"Key": "created_at", "Value": datetime.now(UTC).isoformat()},
                ]
            },
        )

    async def get(self, namespace: str, key: str) -> StoredObject:
        response = await self._call_with_retry(self._client.get_object, Bucket=namespace, Key=key)
        body = await asyncio.to_thread(response["Body"].read)
        return StoredObject(body=body, info=self._metadata_from(response, default_length=len(body)))

    async def head(self, namespace: str, key: str) -> ObjectMetadata:
        response = await self._call_with_retry(self._client.head_object, Bucket=namespace, Key=key)
        return self._metadata_from(response, default_length=0)

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
        kwargs: dict[str, object] = {
            "Bucket": namespace,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
            "Metadata": dict(metadata or {}),
        }
        if if_match:
            kwargs["IfMatch"] = f'"{unquote_etag(if_match)}"'
        if if_none_match == "*":
            kwargs["IfNoneMatch"] = "*"
        response = await self._call_with_retry(self._client.put_object, **kwargs)
        return ObjectMetadata(
            etag=unquote_etag(response.get("ETag")),
            content_type=content_type,
            content_length=len(body),
            metadata=dict(metadata or {}),
        )

    async def delete(self, namespace: str, key: str) -> None:
        await self._call_with_retry(self._client.delete_object, Bucket=namespace, Key=key)

    def status(self) -> dict[str, object]:
        return {
            "backend": self.name,
            "endpoint": self._settings.s3_endpoint_url,
            "region": self._settings.aws_region,
            "circuit_open": self._breaker.is_open,
            "writable": not self._breaker.is_open,
        }

    @staticmethod
    def _metadata_from(response: dict, default_length: int) -> ObjectMetadata:
        return ObjectMetadata(
            etag=unquote_etag(response.get("ETag")),
            content_type=response.get("ContentType") or "application/octet-stream",
            content_length=int(response.get("ContentLength") or default_length),
            metadata=dict(response.get("Metadata") or {}),
        )

    async def _call_with_retry(self, func: Callable[..., object], **kwargs) -> dict:
        if not self._breaker.allow_request():
            raise StorageError("object store temporarily unavailable")

        attempt = 0
        while True:
            try:
                result = await asyncio.to_thread(func, **kwargs)
                self._breaker.record_success()
                return result  # type: ignore[return-value]
            except ClientError as exc:
                typed = classify_client_error(exc)
                if isinstance(typed, (ObjectNotFound, PreconditionConflict)):
                    self._breaker.record_success()
                    raise typed from exc
                failure: Exception = exc
            except BotoCoreError as exc:
                failure = exc

            attempt += 1
            if attempt > self._max_retries:
                self._breaker.record_failure()
                LOGGER.warning("s3_call_failed", operation=getattr(func, "__name__", "call"), attempts=attempt)
                raise StorageError("object store request failed") from failure
            delay = min(self._retry_base * (2 ** (attempt - 1)), self._retry_max)
            if delay:
                await asyncio.sleep(delay)
