"""Share invitation model."""

from sqlalchemy import Column, Index, String, DateTime, JSON
from sqlalchemy.sql import func
from ..database import Base


class ShareInvite(Base):
    """E-mail invitation to collaborate on a resource.

    status is only ever moved out of ``pending`` by a conditional UPDATE.
    A pending row whose expires_at has passed is reported as ``expired``
    on every read; the stored status is rewritten to ``expired`` only when
    an accept or decline attempt hits it.
    """

    __tablename__ = "share_invites"
    __table_args__ = (
        Index("ix_share_invites_resource", "resource_type", "resource_id"),
        Index("ix_share_invites_inviter_user_id", "inviter_user_id"),
        Index("ix_share_invites_invitee_email", "invitee_email"),
        Index("ix_share_invites_status", "status"),
    )

    id = Column(String(50), primary_key=True)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(String(255), nullable=False)
    inviter_user_id = Column(String(255), nullable=False)
    invitee_email = Column(String(255), nullable=False)
    permissions = Column(JSON, nullable=False)
    token = Column(String(128), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default="pending")  # pending, accepted, declined, expired
    expires_at = Column(DateTime(timezone=True), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
