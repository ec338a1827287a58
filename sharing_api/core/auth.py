"""Authentication module exposing FastAPI dependencies.

Public interface:
    ``require_auth``: returns AuthContext or raises 401.
    ``optional_auth``: returns AuthContext, or None for anonymous callers.
    Never raises.

Identity comes from the upstream identity provider's JWT (``sub`` and
``email`` claims) and is trusted as-is. Every authenticated request records
the (user id, e-mail) pair in the local directory so invitations addressed
to that e-mail can be keyed by user id.

When ``settings.auth_enabled`` is False both dependencies return the
configured development identity so the local workflow is unbroken.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .token_factory import TokenPayload, decode_token
from ..database import get_db
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Resolved caller identity available to every endpoint.

    A caller may hold grants under its user id and under its e-mail (grants
    created for invitees who had no account yet); ``identities`` is the set
    the access evaluator unions over.
    """

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def identities(self) -> Tuple[str, ...]:
        return tuple(i for i in (self.user_id, self.email) if i)


def _dev_context() -> AuthContext:
    return AuthContext(
        user_id=settings.dev_user_id,
        email=settings.dev_user_email.strip().lower() or None,
    )


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Require a valid JWT and return the caller's AuthContext.

    When ``AUTH_ENABLED=false`` returns the development identity.
    """
    if not settings.auth_enabled:
        return _load_auth_context(_dev_context(), db)

    if credentials is None:
        raise AuthenticationError("Missing authentication token")

    payload = decode_token(
        credentials.credentials, settings.jwt_secret_key, settings.jwt_algorithm
    )
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    return _load_auth_context(_context_from_payload(payload), db)


def optional_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[AuthContext]:
    """Validate a token if present. Returns None for anonymous callers.

    Used by the public share-link endpoints, where possession of the link
    token is itself the credential. An invalid token is treated as absent.
    """
    if not settings.auth_enabled:
        return _load_auth_context(_dev_context(), db)

    if credentials is None:
        return None

    payload = decode_token(
        credentials.credentials, settings.jwt_secret_key, settings.jwt_algorithm
    )
    if payload is None:
        logger.debug("Ignoring invalid bearer token on optional-auth endpoint")
        return None

    return _load_auth_context(_context_from_payload(payload), db)


def _context_from_payload(payload: TokenPayload) -> AuthContext:
    return AuthContext(user_id=payload.sub, email=payload.email, display_name=payload.name)


def _load_auth_context(context: AuthContext, db: Session) -> AuthContext:
    """Record the asserted identity in the directory and hand the context back."""
    from ..services.identity_service import record_identity

    record_identity(db, context.user_id, context.email, context.display_name)
    return context
