"""Public share link model."""

from sqlalchemy import Column, Index, String, Integer, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from ..database import Base


class ShareLink(Base):
    """Tokenized link that grants its permissions to whoever redeems it.

    access_count only grows, and only through the guarded UPDATE in
    ShareLinkRepository.claim_access. is_active only goes True -> False.
    """

    __tablename__ = "share_links"
    __table_args__ = (
        Index("ix_share_links_resource", "resource_type", "resource_id"),
        Index("ix_share_links_created_by", "created_by"),
    )

    id = Column(String(50), primary_key=True)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(String(255), nullable=False)
    created_by = Column(String(255), nullable=False)
    token = Column(String(128), nullable=False, unique=True)
    permissions = Column(JSON, nullable=False)
    access_count = Column(Integer, nullable=False, default=0)
    max_access_count = Column(Integer, nullable=True)  # NULL = unlimited
    expires_at = Column(DateTime(timezone=True), nullable=True)  # NULL = never
    is_active = Column(Boolean, nullable=False, default=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
