"""Sharing policy: pure functions, no database access.

This is the ONE place where the sharing rules are defined. Services and
routes call into it; nothing else decides what a valid permission set is,
when an invitation counts as expired or whether a link is still usable.

Design:
    - Permissions: view, edit, share, delete. Independent flags, no
      hierarchy ("edit" does not imply "view").
    - Invite status is derived: a pending invite past expires_at is
      "expired" whether or not the row has been rewritten yet.
    - Link usability is derived on every call from is_active, expires_at,
      access_count and max_access_count. Precedence when several apply:
      revoked, then expired, then exhausted.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable, Optional

from ..exceptions import ValidationError

if TYPE_CHECKING:
    from ..models.invite import ShareInvite
    from ..models.share_link import ShareLink

RESOURCE_TYPES: tuple[str, ...] = ("market_data", "csv", "course", "report", "user_content")

# Canonical order; stored permission lists are always sorted this way.
PERMISSIONS: tuple[str, ...] = ("view", "edit", "share", "delete")

INVITE_PENDING = "pending"
INVITE_ACCEPTED = "accepted"
INVITE_DECLINED = "declined"
INVITE_EXPIRED = "expired"

LINK_REVOKED = "revoked"
LINK_EXPIRED = "expired"
LINK_EXHAUSTED = "exhausted"

MIN_EXPIRY_DAYS = 1
MAX_EXPIRY_DAYS = 365

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def normalize_permissions(permissions: Optional[Iterable[str]]) -> list[str]:
    """Validate a permission set and return it deduplicated in canonical order.

    Raises:
        ValidationError: if the set is empty or contains an unknown permission.
    """
    if permissions is None or isinstance(permissions, str):
        raise ValidationError("permissions must be a list of strings", field="permissions")

    requested = set()
    for perm in permissions:
        if perm not in PERMISSIONS:
            raise ValidationError(
                f"Unknown permission '{perm}'. Must be one of: {list(PERMISSIONS)}",
                field="permissions",
            )
        requested.add(perm)

    if not requested:
        raise ValidationError("At least one permission is required", field="permissions")

    return [p for p in PERMISSIONS if p in requested]


def validate_resource_type(resource_type: str) -> str:
    if resource_type not in RESOURCE_TYPES:
        raise ValidationError(
            f"Unknown resource type '{resource_type}'. Must be one of: {list(RESOURCE_TYPES)}",
            field="resourceType",
        )
    return resource_type


def validate_expiry_days(days: int, field: str = "expiresInDays") -> int:
    # bool is an int subclass; true/false in JSON is not a day count.
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    if not MIN_EXPIRY_DAYS <= days <= MAX_EXPIRY_DAYS:
        raise ValidationError(
            f"{field} must be between {MIN_EXPIRY_DAYS} and {MAX_EXPIRY_DAYS}",
            field=field,
        )
    return days


def validate_max_access_count(value: Optional[int]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("maxAccessCount must be a positive integer", field="maxAccessCount")
    return value


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("Valid email address required", field="inviteeEmail")
    return email


def expiry_from_days(days: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
    if days is None:
        return None
    return (now or utcnow()) + timedelta(days=days)


def generate_token(nbytes: int) -> str:
    """Unguessable URL-safe token. Guess resistance is the whole security boundary."""
    return secrets.token_urlsafe(nbytes)


# ---------------------------------------------------------------------------
# Derived state
# ---------------------------------------------------------------------------

def is_invite_past_expiry(invite: ShareInvite, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) > as_utc(invite.expires_at)


def effective_invite_status(invite: ShareInvite, now: Optional[datetime] = None) -> str:
    """Status as callers must see it: pending rows past expiry read as expired."""
    if invite.status == INVITE_PENDING and is_invite_past_expiry(invite, now):
        return INVITE_EXPIRED
    return invite.status


def link_unusable_reason(link: ShareLink, now: Optional[datetime] = None) -> Optional[str]:
    """Why a link cannot be redeemed, or None when it can."""
    if not link.is_active:
        return LINK_REVOKED
    if link.expires_at is not None and (now or utcnow()) > as_utc(link.expires_at):
        return LINK_EXPIRED
    if link.max_access_count is not None and (link.access_count or 0) >= link.max_access_count:
        return LINK_EXHAUSTED
    return None


def is_link_usable(link: ShareLink, now: Optional[datetime] = None) -> bool:
    return link_unusable_reason(link, now) is None


def union_permissions(permission_sets: Iterable[Iterable[str]]) -> list[str]:
    """Union of several permission lists, in canonical order."""
    held: set[str] = set()
    for perms in permission_sets:
        held.update(perms or [])
    return [p for p in PERMISSIONS if p in held]
