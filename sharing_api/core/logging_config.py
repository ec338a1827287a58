"""Logging setup for the sharing API.

Production writes one JSON object per line; development gets a short text
format. Both carry the current request id (from ``request_id_var``, set by
the request context middleware) and pass through the same redaction filter,
because invite and link tokens are bearer credentials that show up in URLs.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

REDACTED = "***REDACTED***"

# (pattern, keep-prefix). The prefix group survives so the log still shows
# which endpoint or parameter was involved.
_REDACTIONS = (
    re.compile(r"(/api/share/(?:accept|decline|invite|link)/)[A-Za-z0-9_\-]{16,}"),
    re.compile(r"(?i)(sharetoken=)[A-Za-z0-9_\-]{8,}"),
    re.compile(r"(?i)(x-share-token:\s*)[A-Za-z0-9_\-]{8,}"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]{20,}"),
    re.compile(r"(?i)((?:api_key|secret|password|token|authorization)[=:]\s*)[^\s,'\"]{8,}"),
)

_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"request_id"}


def redact(text: str) -> str:
    """Mask share tokens, bearer tokens and key=value secrets in *text*."""
    for pattern in _REDACTIONS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


class RedactingFilter(logging.Filter):
    """Scrubs the message, its args, a ``path`` extra and cached tracebacks.

    Also stamps ``record.request_id`` so text formats can print it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("") or "-"
        record.msg = redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(getattr(record, "path", None), str):
            record.path = redact(record.path)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        return True


class JsonLineFormatter(logging.Formatter):
    """``extra={...}`` fields are merged into the top-level object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = request_id_var.get("")
        if rid:
            entry["request_id"] = rid

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in entry:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


_TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        log_level: Standard level name. Defaults to INFO.
        log_format: ``"json"`` (default) or ``"text"``.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RedactingFilter())
    if fmt == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured", extra={"level": level, "format": fmt})
