"""Outbound sharing notifications (invitation and acceptance e-mails).

Delivery is owned by an external e-mail service. This module only builds
messages and hands them to an ``EmailDispatcher``. Dispatch is best effort:
``notify`` logs failures and returns False rather
than raising, so a mail outage never fails invite creation or acceptance.

The dispatcher is constructed once at application startup
(``build_dispatcher``) and injected into routes via ``get_email_dispatcher``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol
from urllib.parse import quote

import requests
from fastapi import Request

from ..core.config import Settings

logger = logging.getLogger(__name__)

_RESOURCE_LABELS = {
    "market_data": "market data",
    "csv": "analysis results",
    "course": "a course",
    "report": "a report",
    "user_content": "content",
}


class EmailDispatchError(Exception):
    """Raised by dispatchers when the e-mail service rejects or is unreachable."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    tags: Dict[str, str] = field(default_factory=dict)


class EmailDispatcher(Protocol):
    def send(self, message: EmailMessage) -> None:
        """Deliver *message* or raise EmailDispatchError."""
        ...


class LoggingEmailDispatcher:
    """Development dispatcher: writes the message to the log instead of sending it."""

    def send(self, message: EmailMessage) -> None:
        logger.info(
            "E-mail (not sent, no EMAIL_SERVICE_URL configured): %s",
            message.subject,
            extra={"to": message.to, "tags": message.tags},
        )


class HttpEmailDispatcher:
    """Posts messages as JSON to the e-mail dispatch service.

    Args:
        service_url: Endpoint accepting ``POST {from, to, subject, text, tags}``.
        api_token: Bearer token. When empty, requests are sent without auth.
        sender: From address.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts on connection errors and 5xx responses.
    """

    def __init__(
        self,
        service_url: str,
        sender: str,
        api_token: str = "",
        timeout: int = 10,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.service_url = service_url
        self.sender = sender
        self.api_token = api_token
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        """Build request headers, including auth if a token is configured."""
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def send(self, message: EmailMessage) -> None:
        payload = {
            "from": self.sender,
            "to": message.to,
            "subject": message.subject,
            "text": message.text,
            "tags": message.tags,
        }

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = self.session.post(
                    self.service_url,
                    json=payload,
                    timeout=self.timeout,
                    headers=self._headers(),
                )
            except requests.RequestException as e:
                last_error = e
                logger.warning(
                    "E-mail dispatch attempt %d/%d failed: %s", attempt + 1, self.max_retries, e
                )
            else:
                if response.status_code < 400:
                    return
                if response.status_code < 500:
                    # Client errors will not succeed on retry.
                    raise EmailDispatchError(
                        f"E-mail service rejected message: HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                last_error = EmailDispatchError(
                    f"E-mail service error: HTTP {response.status_code}",
                    status_code=response.status_code,
                )
                logger.warning(
                    "E-mail dispatch attempt %d/%d got HTTP %d",
                    attempt + 1, self.max_retries, response.status_code,
                )

            if attempt < self.max_retries - 1:
                time.sleep(2 ** attempt)

        raise EmailDispatchError(f"E-mail dispatch failed after {self.max_retries} attempts: {last_error}")


def build_dispatcher(settings: Settings) -> EmailDispatcher:
    """Pick the dispatcher implementation from configuration."""
    if settings.email_service_url:
        return HttpEmailDispatcher(
            service_url=settings.email_service_url,
            sender=settings.email_sender,
            api_token=settings.email_service_token,
            timeout=settings.email_timeout_seconds,
        )
    return LoggingEmailDispatcher()


def get_email_dispatcher(request: Request) -> EmailDispatcher:
    """FastAPI dependency returning the dispatcher created at startup."""
    return request.app.state.email_dispatcher


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def build_invite_message(
    invitee_email: str,
    inviter_name: str,
    resource_type: str,
    resource_title: Optional[str],
    permissions: List[str],
    token: str,
    expires_at_iso: str,
    public_base_url: str,
) -> EmailMessage:
    base = public_base_url.rstrip("/")
    quoted = quote(token, safe="")
    accept_url = f"{base}/share/accept/{quoted}"
    decline_url = f"{base}/share/decline/{quoted}"
    label = _RESOURCE_LABELS.get(resource_type, "content")
    what = f'"{resource_title}"' if resource_title else label

    text = (
        f"{inviter_name} wants to share {what} with you.\n\n"
        f"Permissions: {', '.join(permissions)}\n"
        f"This invitation expires {expires_at_iso}.\n\n"
        f"Accept:  {accept_url}\n"
        f"Decline: {decline_url}\n"
    )
    return EmailMessage(
        to=invitee_email,
        subject=f"{inviter_name} shared {label} with you",
        text=text,
        tags={"kind": "share_invite", "resource_type": resource_type},
    )


def build_accepted_message(
    inviter_email: str,
    accepter: str,
    resource_type: str,
    resource_title: Optional[str],
) -> EmailMessage:
    label = _RESOURCE_LABELS.get(resource_type, "content")
    what = f'"{resource_title}"' if resource_title else label
    return EmailMessage(
        to=inviter_email,
        subject=f"{accepter} accepted your share invitation",
        text=f"{accepter} accepted your invitation and now has access to {what}.\n",
        tags={"kind": "share_accepted", "resource_type": resource_type},
    )


def notify(dispatcher: EmailDispatcher, message: EmailMessage) -> bool:
    """Send *message*, swallowing and logging dispatch failures. Returns success."""
    try:
        dispatcher.send(message)
        return True
    except Exception:
        logger.warning(
            "Sharing notification failed (non-fatal)",
            extra={"kind": message.tags.get("kind"), "to": message.to},
            exc_info=True,
        )
        return False
