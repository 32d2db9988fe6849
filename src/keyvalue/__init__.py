"""Multi-tenant key-value gateway over an object store."""

__version__ = "0.1.0"
