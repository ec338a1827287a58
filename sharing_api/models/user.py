"""Known identities and the sharing audit trail."""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func
from ..database import Base


class User(Base):
    """An identity the service has seen in a verified token.

    Accounts live with the identity provider. Rows here only let an invite
    addressed to an e-mail be matched to a user id.
    """

    __tablename__ = "users"

    user_id = Column(String(255), primary_key=True)
    email = Column(String(255), unique=True, nullable=True)  # lower-cased
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), server_default=func.now())


class AuditLog(Base):
    """One sharing state change. Rows are append-only until retention removes them.

    ``action`` is one of ``services.audit_service.ACTIONS``; ``details`` is
    a JSON object serialized to text.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_resource", "resource_type", "resource_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=True)  # null for system actions such as lazy expiry
    action = Column(String(32), nullable=False)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(String(255), nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
