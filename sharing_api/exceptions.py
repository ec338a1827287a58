"""Exception hierarchy for the sharing API.

Each class fixes its machine-readable code and HTTP status; the FastAPI
handler in ``middleware.exception_handler`` turns any of them into
``{"error": CODE, "message": ..., "details": {...}}``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INVITE_NOT_FOUND = "INVITE_NOT_FOUND"
    LINK_NOT_FOUND = "LINK_NOT_FOUND"
    GRANT_NOT_FOUND = "GRANT_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    EXHAUSTED = "EXHAUSTED"
    CONFLICT = "CONFLICT"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SharingException(Exception):
    """Base class. Subclasses override ``error_code``, ``status_code`` and ``default_message``."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code.value, "message": self.message, "details": self.details}


class ValidationError(SharingException):
    error_code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)


# --- 401 / 403 ---

class AuthenticationError(SharingException):
    """No usable identity on a request that needs one."""

    error_code = ErrorCode.UNAUTHENTICATED
    status_code = 401
    default_message = "Invalid or missing authentication token"


class UnauthorizedError(SharingException):
    """The caller is known but lacks the permission the action needs.

    ``required`` names the missing permission (or "owner").
    """

    error_code = ErrorCode.UNAUTHORIZED
    status_code = 403
    default_message = "You do not have permission to perform this action"

    def __init__(self, message: Optional[str] = None, required: Optional[str] = None):
        super().__init__(message, {"required": required} if required else None)


# --- 404 ---

class NotFoundError(SharingException):
    status_code = 404


class ResourceNotFoundError(NotFoundError):
    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"Resource not found: {resource_type}/{resource_id}",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class InviteNotFoundError(NotFoundError):
    # Looked up by token, which is a credential and never echoed back.
    error_code = ErrorCode.INVITE_NOT_FOUND
    default_message = "Invitation not found"

    def __init__(self):
        super().__init__()


class LinkNotFoundError(NotFoundError):
    error_code = ErrorCode.LINK_NOT_FOUND
    default_message = "Share link not found"

    def __init__(self, link_id: Optional[str] = None):
        super().__init__(details={"link_id": link_id} if link_id else None)


class GrantNotFoundError(NotFoundError):
    error_code = ErrorCode.GRANT_NOT_FOUND

    def __init__(self, grant_id: str):
        super().__init__(f"Permission grant not found: {grant_id}", {"grant_id": grant_id})


# --- 409: state of an invite, link or registration ---

class ConflictError(SharingException):
    error_code = ErrorCode.CONFLICT
    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ExpiredError(SharingException):
    error_code = ErrorCode.EXPIRED
    status_code = 409
    default_message = "This link or invitation has expired"


class RevokedError(SharingException):
    error_code = ErrorCode.REVOKED
    status_code = 409
    default_message = "This share link has been revoked"


class ExhaustedError(SharingException):
    error_code = ErrorCode.EXHAUSTED
    status_code = 409
    default_message = "This share link has reached its access limit"

    def __init__(self, max_access_count: Optional[int] = None):
        super().__init__(
            details={"max_access_count": max_access_count} if max_access_count is not None else None
        )


# --- 500 ---

class DatabaseError(SharingException):
    """A database failure surfaced to the client without driver internals."""

    error_code = ErrorCode.DATABASE_ERROR
    status_code = 500
    default_message = "Database operation failed"
