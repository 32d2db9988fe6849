"""Error taxonomy surfaced by the gateway."""

from __future__ import annotations

from typing import Optional

from fastapi import status

from .schemas import ApiError


class KVError(Exception):
    """Base error carrying the protocol code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_api_error(self) -> ApiError:
        return ApiError(error=self.message, code=self.code, status=self.status_code)


class UnauthorizedError(KVError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Missing or invalid Authorization header"


class ForbiddenError(KVError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Tenant account is suspended"


class NotFoundError(KVError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Key not found"


class KeyTooLongError(KVError):
    code = "KEY_TOO_LONG"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Key too long"


class ObjectTooLargeError(KVError):
    code = "OBJECT_TOO_LARGE"
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_message = "Object too large"


class PreconditionFailedError(KVError):
    code = "PRECONDITION_FAILED"
    status_code = status.HTTP_412_PRECONDITION_FAILED
    default_message = "Precondition failed"


class InternalError(KVError):
    pass


class ProvisioningError(Exception):
    """Raised when a tenant namespace could not be created."""

    def __init__(self, tenant_id: str, message: str):
        self.tenant_id = tenant_id
        super().__init__(message)
