"""Request context middleware: request ids, timing, access log and rate limiting.

Each request gets an ``X-Request-ID`` (propagated when the caller sends one)
and an ``X-Response-Time`` header, and one access-log line with tokens
redacted from the path. Clients are throttled per IP by two buckets: a
general one for every endpoint and a tighter one for endpoints that
resolve an invite or link token.

``TokenBucket`` is plain Python and can be tested without HTTP.
"""

import logging
import math
import re
import threading
import time
import uuid
from typing import Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..core.config import settings
from ..core.logging_config import redact, request_id_var
from ..exceptions import ErrorCode

logger = logging.getLogger(__name__)


class TokenBucket:
    """Per-key token buckets refilled continuously at ``max_per_minute / 60`` per second.

    Stale keys are swept every ``evict_every`` calls so rotating client
    addresses cannot grow the table without bound.
    """

    def __init__(self, evict_every: int = 100, evict_age: float = 120.0):
        self._state: Dict[str, Tuple[float, float]] = {}  # key -> (tokens, last_refill)
        self._lock = threading.Lock()
        self._calls = 0
        self.evict_every = evict_every
        self.evict_age = evict_age

    def hit(self, key: str, max_per_minute: int, now: Optional[float] = None) -> Tuple[bool, float]:
        """Take one token for *key*.

        Returns ``(allowed, retry_after)``; *retry_after* is 0.0 when
        allowed, otherwise seconds until the next token is available.
        A non-positive limit disables the bucket.
        """
        if max_per_minute <= 0:
            return True, 0.0
        if now is None:
            now = time.monotonic()

        with self._lock:
            self._calls += 1
            if self._calls % self.evict_every == 0:
                self._evict(now)

            refill_rate = max_per_minute / 60.0
            tokens, last_refill = self._state.get(key, (float(max_per_minute), now))
            tokens = min(float(max_per_minute), tokens + (now - last_refill) * refill_rate)

            if tokens >= 1.0:
                self._state[key] = (tokens - 1.0, now)
                return True, 0.0

            self._state[key] = (tokens, now)
            return False, (1.0 - tokens) / refill_rate

    def _evict(self, now: float) -> None:
        cutoff = now - self.evict_age
        for key in [k for k, (_, ts) in self._state.items() if ts < cutoff]:
            del self._state[key]

    def clear(self) -> None:
        with self._lock:
            self._state.clear()

    def __len__(self) -> int:
        return len(self._state)


general_bucket = TokenBucket()
token_lookup_bucket = TokenBucket()

# Never throttled: probes and API docs.
_EXEMPT_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})

# Accept, decline, invite preview, link preview and link redeem.
_TOKEN_LOOKUP_PATH = re.compile(r"^/api/share/(?:accept|decline|invite|link)/[^/]+(?:/redeem)?$")


def reset_rate_limits() -> None:
    general_bucket.clear()
    token_lookup_bucket.clear()


def is_token_lookup(method: str, path: str) -> bool:
    # DELETE /api/share/link/{id} addresses a link by id, not by token.
    return method != "DELETE" and bool(_TOKEN_LOOKUP_PATH.match(path))


def client_address(request: Request) -> str:
    """First hop of X-Forwarded-For when proxied, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else "unknown"


def _throttle(request: Request, client: str) -> float:
    """Seconds the client must wait, or 0.0 if the request may proceed."""
    if request.url.path in _EXEMPT_PATHS:
        return 0.0
    allowed, wait = general_bucket.hit(client, settings.rate_limit_per_minute)
    if allowed and is_token_lookup(request.method, request.url.path):
        allowed, wait = token_lookup_bucket.hit(client, settings.token_lookup_rate_limit_per_minute)
    return 0.0 if allowed else wait


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request_id_var.set(request_id)
        safe_path = redact(request.url.path)
        client = client_address(request)

        wait = _throttle(request, client)
        if wait:
            logger.warning(
                "Rate limit exceeded for %s", client,
                extra={"client": client, "path": safe_path, "retry_after": round(wait, 1)},
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": ErrorCode.RATE_LIMITED.value,
                    "message": "Too many requests",
                    "details": {"retry_after": round(wait, 1)},
                },
                headers={"Retry-After": str(math.ceil(wait)), "X-Request-ID": request_id},
            )

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        logger.info(
            "%s %s -> %d (%.1fms)", request.method, safe_path, response.status_code, elapsed_ms,
            extra={"path": safe_path, "status_code": response.status_code, "duration_ms": elapsed_ms},
        )
        return response
