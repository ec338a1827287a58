"""HS256 identity tokens: minting and verification.

The identity provider signs bearer tokens with a secret shared with this
service. Claims used here are ``sub`` (user id), ``email`` (matches invites
addressed to that mailbox) and ``name`` (display name for e-mails).
``create_token`` is used by tests and by operators minting development
tokens.
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

ISSUER = "sharing-api"
_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class TokenPayload:
    sub: str
    email: Optional[str]
    exp: datetime
    name: Optional[str] = None


def _b64url(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _unb64url(segment: bytes) -> bytes:
    return base64.urlsafe_b64decode(segment + b"=" * (-len(segment) % 4))


def _sign(signing_input: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()


def create_token(
    subject: str,
    secret: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    algorithm: str = "HS256",
    expires_hours: int = 24,
) -> str:
    """Return a signed token for *subject*, valid for *expires_hours*."""
    if algorithm != "HS256":
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    issued = int(time.time())
    claims = {"sub": subject, "iss": ISSUER, "iat": issued, "exp": issued + expires_hours * 3600}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name

    signing_input = b".".join(
        _b64url(json.dumps(part, separators=(",", ":")).encode()) for part in (_HEADER, claims)
    )
    return (signing_input + b"." + _b64url(_sign(signing_input, secret))).decode()


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[TokenPayload]:
    """Verify *token* and return its payload, or None if it is unusable.

    Unusable covers a bad signature, a header naming another algorithm,
    expiry, a missing subject and anything malformed.
    """
    if algorithm != "HS256":
        return None
    try:
        header_b64, claims_b64, signature_b64 = token.encode().split(b".")
        if not hmac.compare_digest(_sign(header_b64 + b"." + claims_b64, secret), _unb64url(signature_b64)):
            return None
        if json.loads(_unb64url(header_b64)).get("alg") != "HS256":
            return None
        claims = json.loads(_unb64url(claims_b64))
    except (ValueError, TypeError, AttributeError):
        # ValueError covers bad base64, bad JSON and the wrong segment count.
        return None

    if not isinstance(claims, dict):
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or time.time() > exp:
        return None
    if not claims.get("sub"):
        return None

    email = claims.get("email")
    if isinstance(email, str):
        email = email.strip().lower() or None
    else:
        email = None

    return TokenPayload(
        sub=str(claims["sub"]),
        email=email,
        exp=datetime.fromtimestamp(exp, tz=timezone.utc),
        name=claims.get("name"),
    )
