"""Access evaluation and direct grant management.

Every authority decision in the service goes through PermissionService:
invite and link creation require 'share', listing collaborators requires
'view' or 'share', revoking a grant requires resource ownership (or 'share'
when delegated revocation is enabled).

Rules:
    - Effective permissions are the union over every grant row held by any
      of the caller's identities (user id and e-mail).
    - The registered owner of a resource holds every permission.
    - Flags are independent: holding 'edit' says nothing about 'view'.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

import sqlalchemy.exc
from sqlalchemy.orm import Session

from . import audit_service, identity_service, policy
from ..core.auth import AuthContext
from ..core.config import settings
from ..exceptions import ConflictError, UnauthorizedError, ValidationError
from ..models.grant import PermissionGrant
from ..models.resource import SharedResource
from ..models.user import AuditLog
from ..repositories.grant_repository import GrantRepository
from ..repositories.resource_repository import ResourceRepository

logger = logging.getLogger(__name__)


class PermissionService:
    """Answers "may this caller do X on this resource" and manages grant rows.

    Public methods:
        register_resource     -- idempotent for the same owner
        get_resource          -- 404 when unregistered
        effective_permissions -- union of grants, owner gets everything
        has_permission
        require_permission    -- raises UnauthorizedError
        grant_access          -- direct grant, requires 'share'
        revoke_access         -- owner only unless delegated revoke is on
        list_collaborators
        resource_activity     -- audit trail, owner only
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = policy.utcnow,
        allow_delegated_revoke: Optional[bool] = None,
    ):
        self.db = db
        self.clock = clock
        self.grant_repo = GrantRepository(db)
        self.resource_repo = ResourceRepository(db)
        if allow_delegated_revoke is None:
            allow_delegated_revoke = settings.allow_delegated_revoke
        self.allow_delegated_revoke = allow_delegated_revoke

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def register_resource(
        self,
        resource_type: str,
        resource_id: str,
        owner: AuthContext,
        title: Optional[str] = None,
    ) -> SharedResource:
        """Register a resource as shareable with *owner* as its owner.

        Registering again as the same owner returns the existing record
        (updating the title when one is given). Another owner gets a
        ConflictError.
        """
        policy.validate_resource_type(resource_type)
        resource_id = (resource_id or "").strip()
        if not resource_id:
            raise ValidationError("resourceId is required", field="resourceId")

        existing = self.resource_repo.get_optional(resource_type, resource_id)
        if existing is None:
            try:
                resource = self.resource_repo.create(resource_type, resource_id, owner.user_id, title)
                self.db.commit()
            except sqlalchemy.exc.IntegrityError:
                # Lost a registration race; fall through to the ownership check.
                self.db.rollback()
                existing = self.resource_repo.get(resource_type, resource_id)
            else:
                audit_service.record(
                    self.db, owner.user_id, "resource_register", resource_type, resource_id,
                    details={"title": title} if title else None,
                )
                logger.info("Registered resource %s/%s", resource_type, resource_id)
                return resource

        if existing.owner_id != owner.user_id:
            raise ConflictError(
                f"Resource {resource_type}/{resource_id} is already registered by another owner",
                details={"resource_type": resource_type, "resource_id": resource_id},
            )
        if title is not None and existing.title != title:
            existing.title = title
            self.db.commit()
        return existing

    def get_resource(self, resource_type: str, resource_id: str) -> SharedResource:
        policy.validate_resource_type(resource_type)
        return self.resource_repo.get(resource_type, resource_id)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def effective_permissions(
        self,
        resource_type: str,
        resource_id: str,
        identities: Iterable[str],
        lock: bool = False,
    ) -> List[str]:
        """Permissions the holder of *identities* has on the resource.

        Unknown resources yield the empty list. ``lock=True`` locks the
        caller's grant rows until the surrounding transaction ends.
        """
        identities = [i for i in identities if i]
        resource = self.resource_repo.get_optional(resource_type, resource_id)
        if resource is None:
            return []
        if resource.owner_id in identities:
            return list(policy.PERMISSIONS)

        grants = self.grant_repo.get_for_identities(resource_type, resource_id, identities, lock=lock)
        return policy.union_permissions(g.permissions for g in grants)

    def has_permission(
        self,
        resource_type: str,
        resource_id: str,
        identities: Iterable[str],
        permission: str,
    ) -> bool:
        if permission not in policy.PERMISSIONS:
            raise ValidationError(f"Unknown permission '{permission}'", field="permission")
        return permission in self.effective_permissions(resource_type, resource_id, identities)

    def is_owner(self, resource_type: str, resource_id: str, identities: Iterable[str]) -> bool:
        resource = self.resource_repo.get_optional(resource_type, resource_id)
        return resource is not None and resource.owner_id in set(identities)

    def require_permission(
        self,
        resource_type: str,
        resource_id: str,
        identities: Iterable[str],
        permission: str,
        lock: bool = False,
    ) -> List[str]:
        """Raise unless the caller holds *permission*. Returns the full effective set.

        Raises:
            ResourceNotFoundError: if the resource is not registered.
            UnauthorizedError: if the permission is not held.
        """
        return self.require_any_permission(resource_type, resource_id, identities, (permission,), lock=lock)

    def require_any_permission(
        self,
        resource_type: str,
        resource_id: str,
        identities: Iterable[str],
        permissions: Sequence[str],
        lock: bool = False,
    ) -> List[str]:
        self.resource_repo.get(resource_type, resource_id)
        held = self.effective_permissions(resource_type, resource_id, identities, lock=lock)
        if not any(p in held for p in permissions):
            required = " or ".join(permissions)
            raise UnauthorizedError(
                f"'{required}' permission required on {resource_type}/{resource_id}",
                required=required,
            )
        return held

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def grant_access(
        self,
        resource_type: str,
        resource_id: str,
        grantee: str,
        permissions: Iterable[str],
        granted_by: AuthContext,
    ) -> PermissionGrant:
        """Directly grant *permissions* to *grantee* (a user id or an e-mail).

        Replaces the grantee's existing permission set. E-mails of known
        users are resolved to their user id.
        """
        policy.validate_resource_type(resource_type)
        perms = policy.normalize_permissions(permissions)
        grantee = (grantee or "").strip()
        if not grantee:
            raise ValidationError("grantee is required", field="grantee")
        if "@" in grantee:
            grantee = identity_service.resolve_grantee(self.db, policy.normalize_email(grantee))

        self.require_permission(resource_type, resource_id, granted_by.identities, "share", lock=True)

        grant = self.grant_repo.upsert(
            resource_type, resource_id, grantee, perms,
            granted_by=granted_by.user_id, source="direct", now=self.clock(),
        )
        self.db.commit()

        audit_service.record(
            self.db, granted_by.user_id, "grant_create", resource_type, resource_id,
            details={"grant_id": grant.id, "grantee": grantee, "permissions": perms},
        )
        return grant

    def revoke_access(self, grant_id: str, requested_by: AuthContext) -> None:
        """Delete a grant. Afterwards the grantee holds nothing through it.

        Raises:
            GrantNotFoundError: unknown grant id.
            UnauthorizedError: caller is not the owner (and delegated
                revocation by a 'share' holder is disabled or not applicable).
        """
        grant = self.grant_repo.get_by_id(grant_id)
        resource_type, resource_id = grant.resource_type, grant.resource_id
        identities = requested_by.identities

        if not self.is_owner(resource_type, resource_id, identities):
            allowed = self.allow_delegated_revoke and "share" in self.effective_permissions(
                resource_type, resource_id, identities, lock=True
            )
            if not allowed:
                raise UnauthorizedError("Only the resource owner can revoke access", required="owner")

        grantee = grant.grantee
        self.grant_repo.delete(grant)
        self.db.commit()

        audit_service.record(
            self.db, requested_by.user_id, "grant_revoke", resource_type, resource_id,
            details={"grant_id": grant_id, "grantee": grantee},
        )
        logger.info("Revoked grant %s on %s/%s", grant_id, resource_type, resource_id)

    def list_collaborators(
        self, resource_type: str, resource_id: str, caller: AuthContext
    ) -> List[PermissionGrant]:
        policy.validate_resource_type(resource_type)
        self.require_any_permission(resource_type, resource_id, caller.identities, ("view", "share"))
        return self.grant_repo.list_for_resource(resource_type, resource_id)

    def resource_activity(
        self, resource_type: str, resource_id: str, caller: AuthContext, limit: int = 100
    ) -> List[AuditLog]:
        """Audit trail of a resource, newest first. Owner only."""
        resource = self.get_resource(resource_type, resource_id)
        if resource.owner_id not in caller.identities:
            raise UnauthorizedError("Only the resource owner can view its activity", required="owner")
        return audit_service.activity_for(self.db, resource_type, resource_id, limit=limit)
