"""Tests for sharing notifications: message building and HTTP dispatch."""

import pytest
import requests

from sharing_api.core.config import Settings
from sharing_api.services.notification_service import (
    EmailDispatchError,
    EmailMessage,
    HttpEmailDispatcher,
    LoggingEmailDispatcher,
    build_accepted_message,
    build_dispatcher,
    build_invite_message,
    notify,
)


class _FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code


class _FakeSession:
    """Stands in for requests.Session; replays queued responses or errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, json=None, timeout=None, headers=None):
        self.calls.append({"url": url, "json": json, "headers": headers})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _FakeResponse(outcome)


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setattr("sharing_api.services.notification_service.time.sleep", lambda s: None)


def _message() -> EmailMessage:
    return EmailMessage(to="bob@x.com", subject="Hi", text="Body", tags={"kind": "share_invite"})


class TestMessages:

    def test_invite_message_links_accept_and_decline(self):
        msg = build_invite_message(
            invitee_email="bob@x.com",
            inviter_name="Alice",
            resource_type="csv",
            resource_title="Anomalies",
            permissions=["view"],
            token="tok_123",
            expires_at_iso="2025-03-08T12:00:00+00:00",
            public_base_url="https://app.example.com/",
        )
        assert msg.to == "bob@x.com"
        assert "https://app.example.com/share/accept/tok_123" in msg.text
        assert "https://app.example.com/share/decline/tok_123" in msg.text
        assert '"Anomalies"' in msg.text
        assert msg.tags["kind"] == "share_invite"

    def test_accepted_message(self):
        msg = build_accepted_message("alice@example.com", "bob@x.com", "course", None)
        assert msg.to == "alice@example.com"
        assert "bob@x.com" in msg.subject
        assert "a course" in msg.text


class TestHttpDispatcher:

    def test_posts_json_with_bearer_token(self):
        session = _FakeSession(202)
        HttpEmailDispatcher("https://mail.local/send", "noreply@x.com", api_token="k", session=session).send(_message())
        [call] = session.calls
        assert call["json"]["to"] == "bob@x.com"
        assert call["json"]["from"] == "noreply@x.com"
        assert call["headers"]["Authorization"] == "Bearer k"

    def test_retries_server_errors(self):
        session = _FakeSession(503, requests.ConnectionError("down"), 200)
        HttpEmailDispatcher("https://mail.local/send", "noreply@x.com", session=session).send(_message())
        assert len(session.calls) == 3

    def test_client_error_is_not_retried(self):
        session = _FakeSession(422, 200)
        with pytest.raises(EmailDispatchError) as exc:
            HttpEmailDispatcher("https://mail.local/send", "noreply@x.com", session=session).send(_message())
        assert exc.value.status_code == 422
        assert len(session.calls) == 1

    def test_gives_up_after_max_retries(self):
        session = _FakeSession(500, 500)
        dispatcher = HttpEmailDispatcher("https://mail.local/send", "noreply@x.com", max_retries=2, session=session)
        with pytest.raises(EmailDispatchError):
            dispatcher.send(_message())


class TestNotify:

    def test_failures_are_swallowed(self):
        session = _FakeSession(400)
        dispatcher = HttpEmailDispatcher("https://mail.local/send", "noreply@x.com", session=session)
        assert notify(dispatcher, _message()) is False

    def test_success(self):
        assert notify(LoggingEmailDispatcher(), _message()) is True


class TestBuildDispatcher:

    def test_logging_dispatcher_without_url(self):
        assert isinstance(build_dispatcher(Settings(email_service_url="")), LoggingEmailDispatcher)

    def test_http_dispatcher_with_url(self):
        dispatcher = build_dispatcher(Settings(email_service_url="https://mail.local/send"))
        assert isinstance(dispatcher, HttpEmailDispatcher)
        assert dispatcher.service_url == "https://mail.local/send"
