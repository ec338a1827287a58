"""Data access repositories."""

from .base import BaseRepository
from .grant_repository import GrantRepository
from .invite_repository import InviteRepository
from .link_repository import ShareLinkRepository
from .resource_repository import ResourceRepository

__all__ = [
    "BaseRepository",
    "GrantRepository",
    "InviteRepository",
    "ShareLinkRepository",
    "ResourceRepository",
]
