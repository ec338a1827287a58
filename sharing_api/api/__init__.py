"""API routes."""

from .shares import router as shares_router
from .permissions import router as permissions_router
from .resources import router as resources_router

__all__ = [
    "shares_router",
    "permissions_router",
    "resources_router",
]
