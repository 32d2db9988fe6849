"""Tenant registry and persistence."""

from .registry import TenantRegistry
from .repository import InMemoryTenantRepository, SqlTenantRepository, TenantRepository

__all__ = [
    "InMemoryTenantRepository",
    "SqlTenantRepository",
    "TenantRegistry",
    "TenantRepository",
]
