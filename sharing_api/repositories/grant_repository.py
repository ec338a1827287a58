"""Repository for permission grants (the permission store)."""

import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.dialects import postgresql, sqlite

from ..exceptions import GrantNotFoundError
from ..models.grant import PermissionGrant
from .base import BaseRepository


class GrantRepository(BaseRepository[PermissionGrant]):
    """Data access layer for permission grants.

    Writes never flush-then-check: ``upsert`` is a single
    ``INSERT ... ON CONFLICT DO UPDATE`` so two requests granting the same
    (resource, grantee) pair cannot produce two rows.
    """

    model_class = PermissionGrant

    def _not_found(self, key):
        return GrantNotFoundError(key)

    def _insert(self):
        if self.dialect == "postgresql":
            return postgresql.insert(PermissionGrant)
        return sqlite.insert(PermissionGrant)

    def upsert(
        self,
        resource_type: str,
        resource_id: str,
        grantee: str,
        permissions: List[str],
        granted_by: Optional[str],
        source: str,
        now: datetime,
    ) -> PermissionGrant:
        """Create the grant or replace the permission set of the existing one."""
        stmt = self._insert().values(
            id=str(uuid.uuid4()),
            resource_type=resource_type,
            resource_id=resource_id,
            grantee=grantee,
            permissions=permissions,
            granted_by=granted_by,
            source=source,
            granted_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["resource_type", "resource_id", "grantee"],
            set_={
                "permissions": stmt.excluded.permissions,
                "granted_by": stmt.excluded.granted_by,
                "source": stmt.excluded.source,
                "granted_at": stmt.excluded.granted_at,
            },
        )
        self.db.execute(stmt)
        # The statement bypassed the identity map; drop stale cached rows.
        self.db.expire_all()
        return self.get_for_grantee(resource_type, resource_id, grantee)

    def get_for_grantee(
        self, resource_type: str, resource_id: str, grantee: str
    ) -> Optional[PermissionGrant]:
        return (
            self.db.query(PermissionGrant)
            .filter(
                PermissionGrant.resource_type == resource_type,
                PermissionGrant.resource_id == resource_id,
                PermissionGrant.grantee == grantee,
            )
            .first()
        )

    def get_for_identities(
        self,
        resource_type: str,
        resource_id: str,
        identities: Iterable[str],
        lock: bool = False,
    ) -> List[PermissionGrant]:
        """All grant rows on a resource held by any of the caller's identities.

        ``lock=True`` takes row locks (``SELECT ... FOR UPDATE`` on PostgreSQL)
        so a concurrent revocation cannot slip between a permission check and
        the write it guards. SQLite ignores the clause; its writers are
        serialized by the database lock instead.
        """
        keys = [i for i in identities if i]
        if not keys:
            return []
        query = self.db.query(PermissionGrant).filter(
            PermissionGrant.resource_type == resource_type,
            PermissionGrant.resource_id == resource_id,
            PermissionGrant.grantee.in_(keys),
        )
        if lock:
            query = query.with_for_update()
        return query.all()

    def list_for_resource(self, resource_type: str, resource_id: str) -> List[PermissionGrant]:
        return (
            self.db.query(PermissionGrant)
            .filter(
                PermissionGrant.resource_type == resource_type,
                PermissionGrant.resource_id == resource_id,
            )
            .order_by(PermissionGrant.granted_at, PermissionGrant.id)
            .all()
        )

    def delete(self, grant: PermissionGrant) -> None:
        """Hard delete; a revoked collaborator keeps nothing."""
        self.db.delete(grant)
        self.db.flush()
