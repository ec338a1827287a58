"""Invitation engine: e-mail invitations to collaborate on a resource.

Lifecycle:
    pending -> accepted | declined     (one conditional UPDATE, first wins)
    pending -> expired                 (derived on read; persisted lazily
                                        when an accept/decline hits it)

An accepted invite materializes a PermissionGrant for the invitee. The
grant is keyed by the invitee's user id when that e-mail belongs to a known
user, otherwise by the e-mail itself. Accepting twice returns the grant the
first acceptance created.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from . import audit_service, identity_service, policy
from .permission_service import PermissionService
from ..core.auth import AuthContext
from ..core.config import settings
from ..exceptions import ConflictError, ExpiredError
from ..models.grant import PermissionGrant
from ..models.invite import ShareInvite
from ..repositories.grant_repository import GrantRepository
from ..repositories.invite_repository import InviteRepository
from ..schemas.sharing import InvitePreview, InviteResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcceptResult:
    """Outcome of accept_invite. ``newly_accepted`` is False for repeat accepts."""
    invite: ShareInvite
    grant: PermissionGrant
    newly_accepted: bool = False


class InviteService:
    """Create, resolve and list share invitations.

    Public methods:
        create_invite          -- requires 'share' on the resource
        get_invite             -- public preview by token
        accept_invite          -- returns AcceptResult; idempotent
        decline_invite         -- pending invites only; never touches grants
        list_sent_invites
        list_received_invites
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = policy.utcnow,
        default_expiry_days: Optional[int] = None,
        token_bytes: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.invite_repo = InviteRepository(db)
        self.grant_repo = GrantRepository(db)
        self.permissions = PermissionService(db, clock=clock)
        self.default_expiry_days = default_expiry_days or settings.invite_default_expiry_days
        self.token_bytes = token_bytes or settings.share_token_bytes

    # ------------------------------------------------------------------
    # Create / preview
    # ------------------------------------------------------------------

    def create_invite(
        self,
        inviter: AuthContext,
        resource_type: str,
        resource_id: str,
        invitee_email: str,
        permissions: List[str],
        expires_in_days: Optional[int] = None,
    ) -> ShareInvite:
        """Issue an invitation. The returned row carries the secret token.

        Raises:
            ValidationError: bad permission set, e-mail or expiry.
            ResourceNotFoundError: resource is not registered.
            UnauthorizedError: inviter lacks 'share'.
        """
        policy.validate_resource_type(resource_type)
        perms = policy.normalize_permissions(permissions)
        email = policy.normalize_email(invitee_email)
        days = policy.validate_expiry_days(
            self.default_expiry_days if expires_in_days is None else expires_in_days
        )

        # Lock the inviter's grants so a concurrent revocation cannot land
        # between the check and the insert.
        self.permissions.require_permission(
            resource_type, resource_id, inviter.identities, "share", lock=True
        )

        now = self.clock()
        invite = self.invite_repo.create(
            resource_type=resource_type,
            resource_id=resource_id,
            inviter_user_id=inviter.user_id,
            invitee_email=email,
            permissions=perms,
            token=policy.generate_token(self.token_bytes),
            expires_at=now + timedelta(days=days),
            now=now,
        )
        self.db.commit()

        audit_service.record(
            self.db, inviter.user_id, "invite_create", resource_type, resource_id,
            details={"invite_id": invite.id, "invitee": email, "permissions": perms},
        )
        logger.info(
            "Invite %s created for %s/%s (expires in %d days)",
            invite.id, resource_type, resource_id, days,
        )
        return invite

    def get_invite(self, token: str) -> InvitePreview:
        """Public preview for the page behind the e-mail link. Read only."""
        invite = self.invite_repo.get_by_token(token)
        resource = self.permissions.resource_repo.get_optional(invite.resource_type, invite.resource_id)
        return InvitePreview(
            resource_type=invite.resource_type,
            resource_id=invite.resource_id,
            resource_title=resource.title if resource else None,
            inviter_user_id=invite.inviter_user_id,
            invitee_email=invite.invitee_email,
            permissions=list(invite.permissions),
            status=policy.effective_invite_status(invite, self.clock()),
            expires_at=invite.expires_at,
        )

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    def accept_invite(
        self, token: str, accepter: Optional[AuthContext] = None
    ) -> AcceptResult:
        """Accept an invitation and materialize the invitee's grant.

        Raises:
            InviteNotFoundError: unknown token.
            ExpiredError: past expiry (the stored status becomes expired).
            ConflictError: declined, or accepted and the grant since revoked.
        """
        invite = self.invite_repo.get_by_token(token)
        now = self.clock()
        grantee = self._grantee_for(invite, accepter)

        if invite.status == policy.INVITE_ACCEPTED:
            return AcceptResult(invite, self._existing_grant(invite, grantee))

        if invite.status == policy.INVITE_PENDING and not policy.is_invite_past_expiry(invite, now):
            if self.invite_repo.resolve_pending(invite.id, policy.INVITE_ACCEPTED, now):
                grant = self.grant_repo.upsert(
                    invite.resource_type, invite.resource_id, grantee, list(invite.permissions),
                    granted_by=invite.inviter_user_id, source="invite", now=now,
                )
                self.db.commit()
                invite = self.invite_repo.get_by_id(invite.id)
                audit_service.record(
                    self.db, accepter.user_id if accepter else grantee, "invite_accept",
                    invite.resource_type, invite.resource_id,
                    details={"invite_id": invite.id, "grant_id": grant.id, "grantee": grantee},
                )
                logger.info("Invite %s accepted by %s", invite.id, grantee)
                return AcceptResult(invite, grant, newly_accepted=True)

            # Someone else resolved it (or it expired) between our read and write.
            self.db.rollback()
            invite = self.invite_repo.get_by_id(invite.id)
            if invite.status == policy.INVITE_ACCEPTED:
                return AcceptResult(invite, self._existing_grant(invite, grantee))

        self._raise_unresolvable(invite, now, "accepted")

    def decline_invite(self, token: str, decliner: Optional[AuthContext] = None) -> ShareInvite:
        """Decline a pending invitation.

        Raises:
            InviteNotFoundError: unknown token.
            ExpiredError: past expiry (the stored status becomes expired).
            ConflictError: already accepted or declined.
        """
        invite = self.invite_repo.get_by_token(token)
        now = self.clock()

        if invite.status == policy.INVITE_PENDING and not policy.is_invite_past_expiry(invite, now):
            if self.invite_repo.resolve_pending(invite.id, policy.INVITE_DECLINED, now):
                self.db.commit()
                invite = self.invite_repo.get_by_id(invite.id)
                audit_service.record(
                    self.db, decliner.user_id if decliner else invite.invitee_email, "invite_decline",
                    invite.resource_type, invite.resource_id,
                    details={"invite_id": invite.id},
                )
                return invite

            self.db.rollback()
            invite = self.invite_repo.get_by_id(invite.id)

        self._raise_unresolvable(invite, now, "declined")

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_sent_invites(self, inviter: AuthContext) -> List[InviteResponse]:
        now = self.clock()
        return [
            InviteResponse.from_invite(invite, policy.effective_invite_status(invite, now))
            for invite in self.invite_repo.list_sent(inviter.user_id)
        ]

    def list_received_invites(self, invitee: AuthContext) -> List[InviteResponse]:
        """Invitations addressed to the caller's e-mail.

        The token is included: the caller proved control of the address by
        authenticating with it, and the inbox accepts via the token.
        """
        now = self.clock()
        emails = [invitee.email] if invitee.email else []
        return [
            InviteResponse.from_invite(invite, policy.effective_invite_status(invite, now))
            for invite in self.invite_repo.list_received(emails)
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _grantee_for(self, invite: ShareInvite, accepter: Optional[AuthContext]) -> str:
        if accepter is not None and accepter.email == invite.invitee_email:
            return accepter.user_id
        return identity_service.resolve_grantee(self.db, invite.invitee_email)

    def _existing_grant(self, invite: ShareInvite, grantee: str) -> PermissionGrant:
        for key in (grantee, invite.invitee_email):
            grant = self.grant_repo.get_for_grantee(invite.resource_type, invite.resource_id, key)
            if grant is not None:
                return grant
        raise ConflictError(
            "Invitation was already accepted and the access it granted has since been revoked",
            details={"status": invite.status},
        )

    def _raise_unresolvable(self, invite: ShareInvite, now: datetime, attempted: str) -> None:
        """Raise the error matching why *invite* cannot move to *attempted*."""
        if invite.status == policy.INVITE_EXPIRED:
            raise ExpiredError("This invitation has expired")

        if invite.status == policy.INVITE_PENDING:
            # Only reachable past expiry: persist the derived status.
            if self.invite_repo.mark_expired(invite.id, now):
                self.db.commit()
                audit_service.record(
                    self.db, None, "invite_expire", invite.resource_type, invite.resource_id,
                    details={"invite_id": invite.id},
                )
            else:
                self.db.rollback()
            raise ExpiredError("This invitation has expired")

        raise ConflictError(
            f"Invitation was already {invite.status} and cannot be {attempted}",
            details={"status": invite.status},
        )
