"""Pydantic schemas for API validation."""

from .sharing import (
    AcceptInviteResponse,
    AuditEntryResponse,
    DeclineInviteResponse,
    EffectivePermissionsResponse,
    GrantCreate,
    GrantResponse,
    InviteCreate,
    InvitePreview,
    InviteResponse,
    LinkCreate,
    LinkPublicResponse,
    LinkResponse,
    OperationResponse,
    RedeemResponse,
    ResourceCreate,
    ResourceResponse,
)

__all__ = [
    "AcceptInviteResponse",
    "AuditEntryResponse",
    "DeclineInviteResponse",
    "EffectivePermissionsResponse",
    "GrantCreate",
    "GrantResponse",
    "InviteCreate",
    "InvitePreview",
    "InviteResponse",
    "LinkCreate",
    "LinkPublicResponse",
    "LinkResponse",
    "OperationResponse",
    "RedeemResponse",
    "ResourceCreate",
    "ResourceResponse",
]
