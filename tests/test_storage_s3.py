from __future__ import annotations

import io

import pytest
from botocore.exceptions import ClientError

from keyvalue.common.settings import GatewaySettings
from keyvalue.storage.base import ObjectNotFound, PreconditionConflict, StorageError
from keyvalue.storage.s3 import CircuitBreaker, S3ObjectStore, classify_client_error

BUCKET = "keyvalue-tenanta00001--use1-az4--x-s3"


def client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.failures: dict[str, list[Exception]] = {}
        self.objects: dict[tuple[str, str], dict] = {}

    def _record(self, name: str, kwargs: dict) -> None:
        self.calls.append((name, kwargs))
        pending = self.failures.get(name)
        if pending:
            raise pending.pop(0)

    def create_bucket(self, **kwargs):
        self._record("create_bucket", kwargs)
        return {}

    def put_bucket_tagging(self, **kwargs):
        self._record("put_bucket_tagging", kwargs)
        return {}

    def put_object(self, **kwargs):
        self._record("put_object", kwargs)
        self.objects[(kwargs["Bucket"], kwargs["Key"])] = kwargs
        return {"ETag": '"etag-1"'}

    def get_object(self, **kwargs):
        self._record("get_object", kwargs)
        stored = self.objects.get((kwargs["Bucket"], kwargs["Key"]))
        if stored is None:
            raise client_error("NoSuchKey")
        return {
            "Body": io.BytesIO(stored["Body"]),
            "ETag": '"etag-1"',
            "ContentType": stored["ContentType"],
            "ContentLength": len(stored["Body"]),
            "Metadata": stored["Metadata"],
        }

    def head_object(self, **kwargs):
        self._record("head_object", kwargs)
        stored = self.objects.get((kwargs["Bucket"], kwargs["Key"]))
        if stored is None:
            raise client_error("404", "HeadObject")
        return {
            "ETag": '"etag-1"',
            "ContentType": stored["ContentType"],
            "ContentLength": len(stored["Body"]),
            "Metadata": stored["Metadata"],
        }

    def delete_object(self, **kwargs):
        self._record("delete_object", kwargs)
        self.objects.pop((kwargs["Bucket"], kwargs["Key"]), None)
        return {}


@pytest.fixture
def fake_client(monkeypatch) -> FakeClient:
    client = FakeClient()

    class FakeSession:
        def client(self, service_name, **kwargs):
            assert service_name == "s3"
            return client

    monkeypatch.setattr("keyvalue.storage.s3.boto3.session.Session", FakeSession)
    return client


def make_store(**overrides) -> S3ObjectStore:
    options = {
        "storage_backend": "s3",
        "s3_max_retries": 2,
        "s3_retry_base_seconds": 0.0,
        "s3_retry_max_seconds": 0.0,
        "s3_circuit_breaker_failures": 5,
    }
    options.update(overrides)
    return S3ObjectStore(GatewaySettings(_env_file=None, **options))


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("NoSuchKey", ObjectNotFound),
        ("404", ObjectNotFound),
        ("PreconditionFailed", PreconditionConflict),
        ("ConditionalRequestConflict", PreconditionConflict),
        ("SlowDown", StorageError),
    ],
)
def test_classify_client_error(code, expected):
    assert type(classify_client_error(client_error(code))) is expected


@pytest.mark.asyncio
async def test_create_namespace_uses_directory_bucket(fake_client):
    store = make_store()
    await store.create_namespace(BUCKET, "tenanta00001", "use1-az4")

    name, kwargs = fake_client.calls[0]
    assert name == "create_bucket"
    assert kwargs["Bucket"] == BUCKET
    assert kwargs["CreateBucketConfiguration"]["Location"] == {"Type": "AvailabilityZone", "Name": "use1-az4"}
    tags = {tag["Key"]: tag["Value"] for tag in fake_client.calls[1][1]["Tagging"]["TagSet"]}
    assert tags["tenant_id"] == "tenanta00001"


@pytest.mark.asyncio
async def test_put_and_get(fake_client):
    store = make_store()
    info = await store.put(BUCKET, "h/ab/key", b"value", "text/plain", {"created-at": "now"})
    assert info.etag == "etag-1"

    stored = await store.get(BUCKET, "h/ab/key")
    assert stored.body == b"value"
    assert stored.info.content_type == "text/plain"
    assert stored.info.metadata == {"created-at": "now"}


@pytest.mark.asyncio
async def test_conditional_put_forwards_headers(fake_client):
    store = make_store()
    await store.put(BUCKET, "h/ab/a", b"v", "text/plain", if_none_match="*")
    await store.put(BUCKET, "h/ab/b", b"v", "text/plain", if_match="etag-1")

    first, second = (kwargs for name, kwargs in fake_client.calls if name == "put_object")
    assert first["IfNoneMatch"] == "*"
    assert "IfMatch" not in first
    assert second["IfMatch"] == '"etag-1"'


@pytest.mark.asyncio
async def test_precondition_failure_is_not_retried(fake_client):
    store = make_store()
    fake_client.failures["put_object"] = [client_error("PreconditionFailed", "PutObject")]
    with pytest.raises(PreconditionConflict):
        await store.put(BUCKET, "h/ab/a", b"v", "text/plain", if_none_match="*")
    assert len([name for name, _ in fake_client.calls if name == "put_object"]) == 1


@pytest.mark.asyncio
async def test_missing_object_is_not_retried(fake_client):
    store = make_store()
    with pytest.raises(ObjectNotFound):
        await store.head(BUCKET, "h/ab/missing")
    assert len(fake_client.calls) == 1


@pytest.mark.asyncio
async def test_transient_errors_are_retried(fake_client):
    store = make_store()
    fake_client.failures["put_object"] = [client_error("SlowDown", "PutObject"), client_error("SlowDown", "PutObject")]
    info = await store.put(BUCKET, "h/ab/a", b"v", "text/plain")
    assert info.etag == "etag-1"
    assert len(fake_client.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_raise_storage_error(fake_client):
    store = make_store(s3_max_retries=1)
    fake_client.failures["get_object"] = [client_error("InternalError"), client_error("InternalError")]
    with pytest.raises(StorageError) as excinfo:
        await store.get(BUCKET, "h/ab/a")
    assert not isinstance(excinfo.value, ObjectNotFound)
    assert len(fake_client.calls) == 2


@pytest.mark.asyncio
async def test_circuit_breaker_short_circuits(fake_client):
    store = make_store(s3_max_retries=0, s3_circuit_breaker_failures=1, s3_circuit_breaker_reset_seconds=60.0)
    fake_client.failures["get_object"] = [client_error("InternalError")]
    with pytest.raises(StorageError):
        await store.get(BUCKET, "h/ab/a")

    with pytest.raises(StorageError):
        await store.get(BUCKET, "h/ab/a")
    assert len(fake_client.calls) == 1
    assert store.status()["circuit_open"] is True
    assert store.status()["writable"] is False


def test_circuit_breaker_resets_after_timeout(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr("keyvalue.storage.s3.time.monotonic", lambda: now[0])
    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=10.0)

    breaker.record_failure()
    assert breaker.allow_request()
    breaker.record_failure()
    assert not breaker.allow_request()

    now[0] += 10.0
    assert breaker.allow_request()
    assert not breaker.is_open
