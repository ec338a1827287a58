"""Business logic services."""

from .invite_service import AcceptResult, InviteService
from .link_service import LinkService, RedeemResult
from .permission_service import PermissionService

__all__ = ["AcceptResult", "InviteService", "LinkService", "PermissionService", "RedeemResult"]
