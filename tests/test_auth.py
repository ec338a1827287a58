"""Tests for the auth module: token creation, validation and dev mode bypass."""

from sharing_api.core.config import settings
from sharing_api.core.token_factory import create_token, decode_token
from sharing_api.models.user import User


class TestTokenFactory:

    def test_create_and_decode(self):
        token = create_token("u-1", "test-secret", email="Ann@Example.com", name="Ann")
        payload = decode_token(token, "test-secret")
        assert payload is not None
        assert payload.sub == "u-1"
        assert payload.email == "ann@example.com"
        assert payload.name == "Ann"

    def test_email_claim_is_optional(self):
        payload = decode_token(create_token("u-1", "test-secret"), "test-secret")
        assert payload.email is None

    def test_wrong_secret_returns_none(self):
        token = create_token("u-1", "correct-secret")
        assert decode_token(token, "wrong-secret") is None

    def test_expired_token_returns_none(self):
        token = create_token("u-1", "secret", expires_hours=-1)
        assert decode_token(token, "secret") is None

    def test_malformed_token_returns_none(self):
        assert decode_token("not.a.token", "secret") is None
        assert decode_token("", "secret") is None


class TestAuthEnabled:

    def test_missing_token_is_401(self, client):
        resp = client.get("/api/share/sent-invites")
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHENTICATED"

    def test_forged_token_is_401(self, client):
        token = create_token("alice", "not-the-server-secret", email="alice@example.com")
        resp = client.get("/api/share/sent-invites", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_authenticated_request_records_identity(self, client, db, alice_headers):
        assert client.get("/api/share/sent-invites", headers=alice_headers).status_code == 200
        db.expire_all()
        user = db.get(User, "alice")
        assert user.email == "alice@example.com"
        assert user.display_name == "Alice"

    def test_public_endpoints_ignore_invalid_tokens(self, client):
        resp = client.post(
            "/api/share/link/unknown-token/redeem",
            headers={"Authorization": "Bearer garbage"},
        )
        assert resp.status_code == 404


class TestAuthDisabledMode:
    """When AUTH_ENABLED=false, every request acts as the development identity."""

    def test_requests_act_as_dev_user(self, client, monkeypatch):
        monkeypatch.setattr(settings, "auth_enabled", False)
        resp = client.post("/api/resources", json={"resourceType": "course", "resourceId": "c-1"})
        assert resp.status_code == 201
        assert resp.json()["ownerId"] == settings.dev_user_id
