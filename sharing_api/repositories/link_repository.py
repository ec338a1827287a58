"""Repository for share links."""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, update

from ..exceptions import LinkNotFoundError
from ..models.share_link import ShareLink
from .base import BaseRepository


class ShareLinkRepository(BaseRepository[ShareLink]):
    """Data access layer for share links."""

    model_class = ShareLink

    def _not_found(self, key):
        return LinkNotFoundError(key)

    def create(
        self,
        resource_type: str,
        resource_id: str,
        created_by: str,
        permissions: List[str],
        token: str,
        expires_at: Optional[datetime],
        max_access_count: Optional[int],
        now: datetime,
    ) -> ShareLink:
        link = ShareLink(
            id=str(uuid.uuid4()),
            resource_type=resource_type,
            resource_id=resource_id,
            created_by=created_by,
            token=token,
            permissions=permissions,
            access_count=0,
            max_access_count=max_access_count,
            expires_at=expires_at,
            is_active=True,
            created_at=now,
        )
        self.db.add(link)
        self.db.flush()
        return link

    def claim_access(self, link_id: str, now: datetime) -> bool:
        """Count one redemption if, and only if, the link is still usable.

        The usability predicate and the increment are one UPDATE, so 2N
        concurrent callers against ``max_access_count = N`` see exactly N
        successes. Returns False when the row did not qualify.
        """
        result = self.db.execute(
            update(ShareLink)
            .where(
                ShareLink.id == link_id,
                ShareLink.is_active.is_(True),
                or_(ShareLink.expires_at.is_(None), ShareLink.expires_at >= now),
                or_(
                    ShareLink.max_access_count.is_(None),
                    ShareLink.access_count < ShareLink.max_access_count,
                ),
            )
            .values(access_count=ShareLink.access_count + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount == 1

    def deactivate(self, link_id: str, now: datetime) -> bool:
        """Flip is_active to False. Returns False if it already was."""
        result = self.db.execute(
            update(ShareLink)
            .where(ShareLink.id == link_id, ShareLink.is_active.is_(True))
            .values(is_active=False, revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount == 1

    def list_for_resource(self, resource_type: str, resource_id: str) -> List[ShareLink]:
        return (
            self.db.query(ShareLink)
            .filter(
                ShareLink.resource_type == resource_type,
                ShareLink.resource_id == resource_id,
            )
            .order_by(ShareLink.created_at.desc(), ShareLink.id)
            .all()
        )

    def list_created_by(self, user_id: str) -> List[ShareLink]:
        return (
            self.db.query(ShareLink)
            .filter(ShareLink.created_by == user_id)
            .order_by(ShareLink.created_at.desc(), ShareLink.id)
            .all()
        )
