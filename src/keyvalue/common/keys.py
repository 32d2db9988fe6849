"""Key layout and credential helpers."""

from __future__ import annotations

import hashlib
import secrets
import string

TENANT_ID_ALPHABET = string.ascii_lowercase + string.digits
TENANT_ID_LENGTH = 12


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_prefix(key: str) -> str:
    """Return the two hex character shard prefix for ``key``."""

    return _sha256_hex(key)[:2]


def physical_key(key: str) -> str:
    """Map a logical key to its sharded object key ``h/<prefix>/<key>``."""

    return f"h/{hash_prefix(key)}/{key}"


def logging_hash(key: str) -> str:
    """One-way short digest used wherever a key would otherwise be logged."""

    return _sha256_hex(key)[:8]


def generate_token() -> str:
    return secrets.token_hex(32)


def generate_tenant_id() -> str:
    return "".join(secrets.choice(TENANT_ID_ALPHABET) for _ in range(TENANT_ID_LENGTH))


def bucket_name(tenant_id: str, zone_id: str, prefix: str = "keyvalue") -> str:
    """Directory bucket name for a tenant: ``<prefix>-<tenant>--<zone>--x-s3``."""

    return f"{prefix}-{tenant_id}--{zone_id}--x-s3"


def key_byte_length(key: str) -> int:
    return len(key.encode("utf-8"))
