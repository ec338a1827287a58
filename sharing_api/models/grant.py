"""Permission grant model: the effective record consulted for access checks."""

from sqlalchemy import Column, Index, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func
from ..database import Base


class PermissionGrant(Base):
    """Who holds which permissions on which resource.

    At most one row per (resource_type, resource_id, grantee). Re-granting
    replaces ``permissions`` in place; revocation deletes the row.

    grantee is either a user id or a lower-cased e-mail address (for
    invitees who had no account when they accepted).
    """

    __tablename__ = "permission_grants"
    __table_args__ = (
        UniqueConstraint(
            "resource_type", "resource_id", "grantee",
            name="uq_permission_grants_resource_grantee",
        ),
        Index("ix_permission_grants_grantee", "grantee"),
        Index("ix_permission_grants_resource", "resource_type", "resource_id"),
    )

    id = Column(String(50), primary_key=True)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(String(255), nullable=False)
    grantee = Column(String(255), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)  # ["view", "edit", "share", "delete"]
    granted_by = Column(String(255), nullable=True)
    source = Column(String(16), nullable=False, default="direct")  # direct, invite, link
    granted_at = Column(DateTime(timezone=True), server_default=func.now())
