"""Audit trail for sharing state changes.

Every invite, link and grant transition is recorded after its own
transaction commits, so an audit write can never undo the change it
describes. Resource owners read the trail through
``GET /api/resources/{type}/{id}/activity``.
"""

import json
import logging
from datetime import timedelta
from typing import List, Optional

import sqlalchemy.exc
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..models.user import AuditLog
from . import policy

logger = logging.getLogger(__name__)

ACTIONS = frozenset({
    "resource_register",
    "grant_create", "grant_revoke",
    "invite_create", "invite_accept", "invite_decline", "invite_expire",
    "link_create", "link_redeem", "link_revoke",
})


def record(
    db: Session,
    actor: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[dict] = None,
) -> Optional[AuditLog]:
    """Append one entry. Returns None instead of raising when the write fails."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    entry = AuditLog(
        user_id=actor,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=json.dumps(details, sort_keys=True) if details else None,
    )
    try:
        db.add(entry)
        db.commit()
    except sqlalchemy.exc.SQLAlchemyError:
        logger.warning(
            "Audit entry for %s on %s/%s was not written", action, resource_type, resource_id,
            exc_info=True,
        )
        db.rollback()
        return None
    return entry


def activity_for(db: Session, resource_type: str, resource_id: str, limit: int = 100) -> List[AuditLog]:
    """Entries for one resource, newest first."""
    stmt = (
        select(AuditLog)
        .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
        .order_by(AuditLog.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def purge_expired(db: Session, retention_days: int, now=None) -> int:
    """Drop entries older than the retention window; 0 keeps everything."""
    if retention_days <= 0:
        return 0

    cutoff = (now or policy.utcnow()) - timedelta(days=retention_days)
    try:
        deleted = db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff)).rowcount
        db.commit()
    except sqlalchemy.exc.SQLAlchemyError:
        logger.warning("Audit retention purge failed", exc_info=True)
        db.rollback()
        return 0
    return deleted or 0


def decode_details(entry: AuditLog) -> dict:
    return json.loads(entry.details) if entry.details else {}
