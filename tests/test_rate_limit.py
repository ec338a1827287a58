"""Tests for the token bucket and its middleware integration."""

from sharing_api.core.config import settings
from sharing_api.middleware.request_context import TokenBucket, is_token_lookup


class TestTokenBucket:
    """Unit tests for the bucket without middleware or HTTP."""

    def test_allows_within_limit(self):
        allowed, retry = TokenBucket().hit("client-a", max_per_minute=60, now=0.0)
        assert allowed is True
        assert retry == 0.0

    def test_denies_after_exhaustion(self):
        bucket = TokenBucket()
        for _ in range(60):
            bucket.hit("client-a", max_per_minute=60, now=0.0)

        allowed, retry = bucket.hit("client-a", max_per_minute=60, now=0.0)
        assert allowed is False
        assert retry > 0

    def test_refills_over_time(self):
        bucket = TokenBucket()
        for _ in range(60):
            bucket.hit("client-a", max_per_minute=60, now=0.0)

        # 2 seconds later: should have refilled ~2 tokens
        allowed, _ = bucket.hit("client-a", max_per_minute=60, now=2.0)
        assert allowed is True

    def test_separate_keys_independent(self):
        bucket = TokenBucket()
        for _ in range(60):
            bucket.hit("client-a", max_per_minute=60, now=0.0)

        allowed, _ = bucket.hit("client-b", max_per_minute=60, now=0.0)
        assert allowed is True

    def test_zero_limit_always_allows(self):
        allowed, _ = TokenBucket().hit("any", max_per_minute=0, now=0.0)
        assert allowed is True

    def test_stale_keys_are_evicted(self):
        bucket = TokenBucket(evict_every=2, evict_age=10.0)
        bucket.hit("old", max_per_minute=60, now=0.0)
        bucket.hit("new", max_per_minute=60, now=100.0)
        assert len(bucket) == 1


class TestTokenLookupPaths:

    def test_token_paths(self):
        assert is_token_lookup("POST", "/api/share/accept/abc")
        assert is_token_lookup("POST", "/api/share/decline/abc")
        assert is_token_lookup("GET", "/api/share/invite/abc")
        assert is_token_lookup("POST", "/api/share/link/abc/redeem")

    def test_other_paths(self):
        assert not is_token_lookup("POST", "/api/share/invite")
        assert not is_token_lookup("GET", "/api/share/invites")
        assert not is_token_lookup("GET", "/api/share/links/report/r-1")
        assert not is_token_lookup("DELETE", "/api/share/link/some-id")


class TestMiddleware:

    def test_token_lookups_are_throttled(self, client, monkeypatch):
        monkeypatch.setattr(settings, "token_lookup_rate_limit_per_minute", 3)
        for _ in range(3):
            assert client.get("/api/share/link/guess").status_code == 404

        resp = client.get("/api/share/link/guess")
        assert resp.status_code == 429
        assert resp.json()["error"] == "RATE_LIMITED"
        assert "retry-after" in resp.headers

    def test_health_is_exempt(self, client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_per_minute", 1)
        for _ in range(5):
            assert client.get("/health").status_code == 200
