"""Repository for share invitations."""

import uuid
from datetime import datetime
from typing import Iterable, List

from sqlalchemy import update

from ..exceptions import InviteNotFoundError
from ..models.invite import ShareInvite
from .base import BaseRepository


class InviteRepository(BaseRepository[ShareInvite]):
    """Data access layer for share invitations."""

    model_class = ShareInvite

    def _not_found(self, key):
        return InviteNotFoundError()

    def create(
        self,
        resource_type: str,
        resource_id: str,
        inviter_user_id: str,
        invitee_email: str,
        permissions: List[str],
        token: str,
        expires_at: datetime,
        now: datetime,
    ) -> ShareInvite:
        invite = ShareInvite(
            id=str(uuid.uuid4()),
            resource_type=resource_type,
            resource_id=resource_id,
            inviter_user_id=inviter_user_id,
            invitee_email=invitee_email,
            permissions=permissions,
            token=token,
            status="pending",
            expires_at=expires_at,
            created_at=now,
        )
        self.db.add(invite)
        self.db.flush()
        return invite

    def resolve_pending(self, invite_id: str, new_status: str, now: datetime) -> bool:
        """Move a still-pending, unexpired invite to *new_status*.

        One conditional UPDATE; returns False when another request already
        resolved the invite or it is past expiry. Callers must branch on the
        result, never on a status they read earlier.
        """
        result = self.db.execute(
            update(ShareInvite)
            .where(
                ShareInvite.id == invite_id,
                ShareInvite.status == "pending",
                ShareInvite.expires_at >= now,
            )
            .values(status=new_status, responded_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount == 1

    def mark_expired(self, invite_id: str, now: datetime) -> bool:
        """Persist the derived expiry of a pending invite. Returns True if rewritten."""
        result = self.db.execute(
            update(ShareInvite)
            .where(
                ShareInvite.id == invite_id,
                ShareInvite.status == "pending",
                ShareInvite.expires_at < now,
            )
            .values(status="expired")
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount == 1

    def list_sent(self, inviter_user_id: str) -> List[ShareInvite]:
        return (
            self.db.query(ShareInvite)
            .filter(ShareInvite.inviter_user_id == inviter_user_id)
            .order_by(ShareInvite.created_at.desc(), ShareInvite.id)
            .all()
        )

    def list_received(self, emails: Iterable[str]) -> List[ShareInvite]:
        keys = [e for e in emails if e]
        if not keys:
            return []
        return (
            self.db.query(ShareInvite)
            .filter(ShareInvite.invitee_email.in_(keys))
            .order_by(ShareInvite.created_at.desc(), ShareInvite.id)
            .all()
        )

