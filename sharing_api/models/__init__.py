"""Database models."""

from .resource import SharedResource
from .grant import PermissionGrant
from .invite import ShareInvite
from .share_link import ShareLink
from .user import User, AuditLog

__all__ = [
    "SharedResource", "PermissionGrant",
    "ShareInvite", "ShareLink",
    "User", "AuditLog",
]
