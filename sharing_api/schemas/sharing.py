"""Sharing schemas: invitations, share links, grants and resources.

Field names are snake_case in Python and camelCase on the wire
(``resourceType``, ``expiresInDays``, ...), matching the web client.
Range checks on permissions and expiry live in services.policy so that
they surface as 400 VALIDATION_ERROR with the same wording everywhere.
Timestamps read back from SQLite are naive; UtcDatetime re-attaches UTC.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _attach_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_attach_utc)]


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, accepts either spelling on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Resources ---

class ResourceCreate(CamelModel):
    """Register a resource as shareable; the caller becomes its owner."""
    resource_type: str
    resource_id: str
    title: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"resourceType": "csv", "resourceId": "abc123", "title": "Q3 anomalies"}]
        }
    )


class ResourceResponse(CamelModel):
    resource_type: str
    resource_id: str
    owner_id: str
    title: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


# --- Grants ---

class GrantCreate(CamelModel):
    """Direct grant by the owner (or a collaborator holding 'share')."""
    resource_type: str
    resource_id: str
    grantee: str  # user id or e-mail
    permissions: List[str]


class GrantResponse(CamelModel):
    id: str
    resource_type: str
    resource_id: str
    grantee: str
    permissions: List[str]
    granted_by: Optional[str] = None
    source: str
    granted_at: Optional[UtcDatetime] = None


class EffectivePermissionsResponse(CamelModel):
    resource_type: str
    resource_id: str
    permissions: List[str]
    is_owner: bool = False


# --- Invitations ---

class InviteCreate(CamelModel):
    resource_type: str
    resource_id: str
    invitee_email: str
    permissions: List[str]
    expires_in_days: Optional[int] = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{
                "resourceType": "report",
                "resourceId": "r-42",
                "inviteeEmail": "bob@example.com",
                "permissions": ["view", "edit"],
                "expiresInDays": 7,
            }]
        }
    )


class InviteResponse(CamelModel):
    """Invitation as seen by its inviter or invitee. status is the effective status."""
    id: str
    resource_type: str
    resource_id: str
    inviter_user_id: str
    invitee_email: str
    permissions: List[str]
    token: Optional[str] = None
    status: str
    expires_at: UtcDatetime
    created_at: Optional[UtcDatetime] = None
    responded_at: Optional[UtcDatetime] = None

    @classmethod
    def from_invite(cls, invite, status: str, include_token: bool = True) -> "InviteResponse":
        return cls(
            id=invite.id,
            resource_type=invite.resource_type,
            resource_id=invite.resource_id,
            inviter_user_id=invite.inviter_user_id,
            invitee_email=invite.invitee_email,
            permissions=list(invite.permissions),
            token=invite.token if include_token else None,
            status=status,
            expires_at=invite.expires_at,
            created_at=invite.created_at,
            responded_at=invite.responded_at,
        )


class InvitePreview(CamelModel):
    """Public view of an invitation for the landing page behind the e-mail link."""
    resource_type: str
    resource_id: str
    resource_title: Optional[str] = None
    inviter_user_id: str
    invitee_email: str
    permissions: List[str]
    status: str
    expires_at: UtcDatetime


class AcceptInviteResponse(CamelModel):
    success: bool = True
    message: str = "Invitation accepted"
    invite: InviteResponse
    grant: GrantResponse


class DeclineInviteResponse(CamelModel):
    success: bool = True
    message: str = "Invitation declined"
    invite: InviteResponse


# --- Share links ---

class LinkCreate(CamelModel):
    resource_type: str
    resource_id: str
    permissions: List[str]
    expires_in_days: Optional[int] = None
    max_access_count: Optional[int] = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{
                "resourceType": "csv",
                "resourceId": "abc123",
                "permissions": ["view"],
                "maxAccessCount": 1,
            }]
        }
    )


class LinkResponse(CamelModel):
    """Owner-facing view of a share link, including its derived usability."""
    id: str
    resource_type: str
    resource_id: str
    created_by: str
    token: str
    permissions: List[str]
    access_count: int
    max_access_count: Optional[int] = None
    expires_at: Optional[UtcDatetime] = None
    is_active: bool
    usable: bool
    created_at: Optional[UtcDatetime] = None
    revoked_at: Optional[UtcDatetime] = None

    @classmethod
    def from_link(cls, link, usable: bool) -> "LinkResponse":
        return cls(
            id=link.id,
            resource_type=link.resource_type,
            resource_id=link.resource_id,
            created_by=link.created_by,
            token=link.token,
            permissions=list(link.permissions),
            access_count=link.access_count or 0,
            max_access_count=link.max_access_count,
            expires_at=link.expires_at,
            is_active=bool(link.is_active),
            usable=usable,
            created_at=link.created_at,
            revoked_at=link.revoked_at,
        )


class LinkPublicResponse(CamelModel):
    """What an anonymous visitor may learn about a link without redeeming it.

    ``reason`` is null for a usable link, otherwise revoked / expired /
    exhausted, so the client can tell "no longer usable" from "never existed"
    (the latter is a 404).
    """
    resource_type: str
    resource_id: str
    permissions: List[str]
    expires_at: Optional[UtcDatetime] = None
    usable: bool
    reason: Optional[str] = None


class RedeemResponse(CamelModel):
    resource_type: str
    resource_id: str
    permissions: List[str]
    grant_id: Optional[str] = None


# --- Misc ---

class OperationResponse(CamelModel):
    success: bool = True
    message: str


class AuditEntryResponse(CamelModel):
    id: int
    actor: Optional[str] = None
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[UtcDatetime] = None
