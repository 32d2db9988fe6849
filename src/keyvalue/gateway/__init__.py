"""Tenant-scoped key-value HTTP gateway."""

from .service import KVGateway, KVResponse

__all__ = ["KVGateway", "KVResponse"]
