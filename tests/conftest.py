"""Shared test fixtures for the sharing API test suite.

Tests run against a throwaway SQLite file by default (a file rather than
``:memory:`` so that concurrent sessions in the redemption race tests see
the same database). Set ``TEST_DATABASE_URL`` to run against PostgreSQL.
Each test starts from empty tables.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

_TEST_DIR = tempfile.mkdtemp(prefix="sharing-api-tests-")

# Configure the app before any app imports.
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(_TEST_DIR, 'sharing_test.db')}",
)
os.environ["AUTH_ENABLED"] = "true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["LOG_FORMAT"] = "text"
os.environ["EMAIL_SERVICE_URL"] = ""
os.environ["PUBLIC_BASE_URL"] = "https://app.example.com"

import pytest
from fastapi.testclient import TestClient

from sharing_api.core.auth import AuthContext
from sharing_api.core.config import settings
from sharing_api.core.token_factory import create_token
from sharing_api.database import Base, SessionLocal, get_db
from sharing_api.main import app
from sharing_api.middleware.request_context import reset_rate_limits
from sharing_api.services import identity_service
from sharing_api.services.notification_service import get_email_dispatcher
from sharing_api.services.permission_service import PermissionService


class RecordingDispatcher:
    """E-mail dispatcher that keeps messages instead of sending them."""

    def __init__(self):
        self.sent = []

    def send(self, message) -> None:
        self.sent.append(message)


class FakeClock:
    """Injectable clock for services. Starts at a fixed UTC instant."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty every table before each test.

    Runs before the test (not after) so failures leave data available
    for debugging.
    """
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()
    reset_rate_limits()
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def outbox() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def client(db, outbox):
    """FastAPI TestClient with the DB session and e-mail dispatcher overridden."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_email_dispatcher] = lambda: outbox
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def headers_for(user_id: str, email: str = None, name: str = None) -> dict:
    """Bearer headers for an identity-provider token."""
    token = create_token(subject=user_id, secret=settings.jwt_secret_key, email=email, name=name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def alice() -> AuthContext:
    return AuthContext(user_id="alice", email="alice@example.com", display_name="Alice")


@pytest.fixture()
def bob() -> AuthContext:
    return AuthContext(user_id="bob", email="bob@x.com")


@pytest.fixture()
def carol() -> AuthContext:
    return AuthContext(user_id="carol", email="carol@example.com")


@pytest.fixture()
def alice_headers() -> dict:
    return headers_for("alice", "alice@example.com", "Alice")


@pytest.fixture()
def bob_headers() -> dict:
    return headers_for("bob", "bob@x.com")


@pytest.fixture()
def carol_headers() -> dict:
    return headers_for("carol", "carol@example.com")


@pytest.fixture()
def known_users(db, alice, bob, carol):
    """Record alice, bob and carol in the identity directory."""
    for user in (alice, bob, carol):
        identity_service.record_identity(db, user.user_id, user.email, user.display_name)


@pytest.fixture()
def report(db, alice):
    """A report owned by alice."""
    return PermissionService(db).register_resource("report", "r-42", alice, title="Q3 report")


@pytest.fixture()
def csv_resource(db, alice):
    """A CSV analysis owned by alice."""
    return PermissionService(db).register_resource("csv", "abc123", alice, title="Anomalies")
