"""Share-link engine: tokenized links that grant access to whoever redeems them.

A link is usable iff it is active, not past expires_at, and below
max_access_count (when one is set). Usability is re-derived on every read;
the only write paths are the guarded increment in ``redeem_link`` and the
one-way deactivation in ``revoke_link``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from . import audit_service, policy
from .permission_service import PermissionService
from ..core.auth import AuthContext
from ..core.config import settings
from ..exceptions import (
    ConflictError,
    ExhaustedError,
    ExpiredError,
    RevokedError,
    UnauthorizedError,
    ValidationError,
)
from ..models.grant import PermissionGrant
from ..models.share_link import ShareLink
from ..repositories.grant_repository import GrantRepository
from ..repositories.link_repository import ShareLinkRepository
from ..schemas.sharing import LinkPublicResponse, LinkResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedeemResult:
    """Outcome of a successful redemption.

    ``grant`` is None for anonymous redemptions, where the access is counted
    and the permissions apply to the current request only. It is also None
    when the owner redeems a link to their own resource.
    """
    link: ShareLink
    permissions: List[str]
    grant: Optional[PermissionGrant] = None


class LinkService:
    """Create, redeem, revoke and list share links.

    Public methods:
        create_link  -- requires 'share' on the resource
        get_link     -- public metadata; does not count an access
        redeem_link  -- counts one access; raises Revoked/Expired/Exhausted
        revoke_link  -- creator or owner; irreversible, idempotent
        list_links
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = policy.utcnow,
        token_bytes: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.link_repo = ShareLinkRepository(db)
        self.grant_repo = GrantRepository(db)
        self.permissions = PermissionService(db, clock=clock)
        self.token_bytes = token_bytes or settings.share_token_bytes

    def create_link(
        self,
        creator: AuthContext,
        resource_type: str,
        resource_id: str,
        permissions: List[str],
        expires_in_days: Optional[int] = None,
        max_access_count: Optional[int] = None,
    ) -> ShareLink:
        """Issue a share link.

        Raises:
            ValidationError: bad permission set, expiry or access ceiling.
            ResourceNotFoundError: resource is not registered.
            UnauthorizedError: creator lacks 'share'.
        """
        policy.validate_resource_type(resource_type)
        perms = policy.normalize_permissions(permissions)
        if expires_in_days is not None:
            policy.validate_expiry_days(expires_in_days)
        max_access_count = policy.validate_max_access_count(max_access_count)

        self.permissions.require_permission(
            resource_type, resource_id, creator.identities, "share", lock=True
        )

        now = self.clock()
        link = self.link_repo.create(
            resource_type=resource_type,
            resource_id=resource_id,
            created_by=creator.user_id,
            permissions=perms,
            token=policy.generate_token(self.token_bytes),
            expires_at=policy.expiry_from_days(expires_in_days, now),
            max_access_count=max_access_count,
            now=now,
        )
        self.db.commit()

        audit_service.record(
            self.db, creator.user_id, "link_create", resource_type, resource_id,
            details={
                "link_id": link.id,
                "permissions": perms,
                "expires_in_days": expires_in_days,
                "max_access_count": max_access_count,
            },
        )
        return link

    def get_link(self, token: str) -> LinkPublicResponse:
        link = self.link_repo.get_by_token(token)
        reason = policy.link_unusable_reason(link, self.clock())
        return LinkPublicResponse(
            resource_type=link.resource_type,
            resource_id=link.resource_id,
            permissions=list(link.permissions),
            expires_at=link.expires_at,
            usable=reason is None,
            reason=reason,
        )

    def redeem_link(
        self,
        token: str,
        redeemer: Optional[AuthContext],
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> RedeemResult:
        """Count one access against the link and grant its permissions.

        Every call is one redemption event, including repeat calls by the
        same redeemer. The resource owner already holds everything and gets no
        grant row. When *resource_type*/*resource_id* are given the link must
        belong to that resource.

        Raises:
            LinkNotFoundError: unknown token.
            ValidationError: the link belongs to another resource.
            RevokedError / ExpiredError / ExhaustedError: link not usable,
                reported in that order of precedence.
        """
        link = self.link_repo.get_by_token(token)
        if resource_type is not None and (
            link.resource_type != resource_type or link.resource_id != resource_id
        ):
            raise ValidationError("Share token does not belong to this resource", field="shareToken")

        now = self.clock()
        if not self.link_repo.claim_access(link.id, now):
            self.db.rollback()
            link = self.link_repo.get_by_id(link.id)
            self._raise_unusable(link, now)

        perms = list(link.permissions)
        grant = None
        if redeemer is not None and not self.permissions.is_owner(
            link.resource_type, link.resource_id, redeemer.identities
        ):
            grant = self.grant_repo.upsert(
                link.resource_type, link.resource_id, redeemer.user_id, perms,
                granted_by=link.created_by, source="link", now=now,
            )
        self.db.commit()
        link = self.link_repo.get_by_id(link.id)

        audit_service.record(
            self.db, redeemer.user_id if redeemer else None, "link_redeem",
            link.resource_type, link.resource_id,
            details={"link_id": link.id, "access_count": link.access_count},
        )
        return RedeemResult(link=link, permissions=perms, grant=grant)

    def revoke_link(self, link_id: str, requested_by: AuthContext) -> ShareLink:
        """Deactivate a link. Only its creator or the resource owner may do this."""
        link = self.link_repo.get_by_id(link_id)
        identities = requested_by.identities
        if link.created_by not in identities and not self.permissions.is_owner(
            link.resource_type, link.resource_id, identities
        ):
            raise UnauthorizedError("Only the link creator or the resource owner can revoke this link")

        if self.link_repo.deactivate(link.id, self.clock()):
            self.db.commit()
            audit_service.record(
                self.db, requested_by.user_id, "link_revoke", link.resource_type, link.resource_id,
                details={"link_id": link.id},
            )
            logger.info("Share link %s revoked", link.id)
        else:
            self.db.rollback()
        return self.link_repo.get_by_id(link_id)

    def list_links(
        self,
        caller: AuthContext,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> List[LinkResponse]:
        """Links for one resource (needs 'share'), or the caller's own links."""
        now = self.clock()
        if resource_type is None:
            links = self.link_repo.list_created_by(caller.user_id)
        else:
            policy.validate_resource_type(resource_type)
            self.permissions.require_permission(resource_type, resource_id, caller.identities, "share")
            links = self.link_repo.list_for_resource(resource_type, resource_id)
        return [LinkResponse.from_link(link, policy.is_link_usable(link, now)) for link in links]

    @staticmethod
    def _raise_unusable(link: ShareLink, now: datetime) -> None:
        reason = policy.link_unusable_reason(link, now)
        if reason == policy.LINK_REVOKED:
            raise RevokedError()
        if reason == policy.LINK_EXPIRED:
            raise ExpiredError("This share link has expired")
        if reason == policy.LINK_EXHAUSTED:
            raise ExhaustedError(link.max_access_count)
        # The guarded UPDATE refused a link that now reads as usable; only a
        # clock disagreement at the expiry instant can do this.
        raise ConflictError("Share link could not be redeemed, try again")
