"""Identity directory: remembers users asserted by the identity provider.

An invitation is addressed to an e-mail. When that e-mail belongs to a user
we have seen, the accepted grant is keyed by the user id; otherwise by the
e-mail itself, which the invitee's token later proves they control.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy.exc
from sqlalchemy.orm import Session

from ..models.user import User

logger = logging.getLogger(__name__)


def record_identity(db: Session, user_id: str, email: Optional[str], display_name: Optional[str] = None) -> None:
    """Upsert the (user_id, email) pair from verified token claims.

    Never raises: a failed directory write must not fail the request it
    piggybacks on.
    """
    email = email.strip().lower() if email else None
    try:
        user = db.get(User, user_id)
        if user is None:
            db.add(User(user_id=user_id, email=email, display_name=display_name))
        elif user.email == email and (display_name is None or user.display_name == display_name):
            return
        else:
            user.email = email
            if display_name is not None:
                user.display_name = display_name
            user.last_seen_at = datetime.now(timezone.utc)
        db.commit()
    except sqlalchemy.exc.SQLAlchemyError as e:
        logger.warning("Failed to record identity %s: %s", user_id, e)
        db.rollback()


def resolve_grantee(db: Session, email: str) -> str:
    """Identity a grant for *email* should be keyed by."""
    email = email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    return user.user_id if user is not None else email


def display_name_for(db: Session, user_id: str) -> str:
    user = db.get(User, user_id)
    if user is None:
        return user_id
    return user.display_name or user.email or user_id
