"""Shareable resource registry."""

from sqlalchemy import Column, Index, String, DateTime
from sqlalchemy.sql import func
from ..database import Base


class SharedResource(Base):
    """A resource the owning system has registered as shareable.

    The sharing core never stores resource content. It only needs to know
    that (resource_type, resource_id) exists and who owns it; the owner
    implicitly holds every permission.
    """

    __tablename__ = "shared_resources"
    __table_args__ = (
        Index("ix_shared_resources_owner_id", "owner_id"),
    )

    resource_type = Column(String(32), primary_key=True)  # market_data, csv, course, report, user_content
    resource_id = Column(String(255), primary_key=True)
    owner_id = Column(String(255), nullable=False)
    title = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
