"""Unit tests for LinkService: share-link lifecycle, including concurrent redemption."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from sharing_api.core.auth import AuthContext
from sharing_api.database import SessionLocal
from sharing_api.exceptions import (
    ExhaustedError,
    ExpiredError,
    LinkNotFoundError,
    RevokedError,
    UnauthorizedError,
    ValidationError,
)
from sharing_api.models.grant import PermissionGrant
from sharing_api.models.share_link import ShareLink
from sharing_api.services.link_service import LinkService
from sharing_api.services.permission_service import PermissionService


class TestCreateLink:

    def test_defaults_are_unlimited(self, db, alice, report):
        link = LinkService(db).create_link(alice, "report", "r-42", ["view"])
        assert link.is_active is True
        assert link.access_count == 0
        assert link.max_access_count is None
        assert link.expires_at is None

    @pytest.mark.parametrize("kwargs", [
        {"permissions": []},
        {"permissions": ["view"], "max_access_count": 0},
        {"permissions": ["view"], "expires_in_days": 400},
    ])
    def test_invalid_input(self, db, alice, report, kwargs):
        with pytest.raises(ValidationError):
            LinkService(db).create_link(alice, "report", "r-42", **kwargs)

    def test_requires_share(self, db, alice, bob, report):
        PermissionService(db).grant_access("report", "r-42", "bob", ["view"], alice)
        with pytest.raises(UnauthorizedError):
            LinkService(db).create_link(bob, "report", "r-42", ["view"])


class TestRedeemLink:

    def test_single_use_csv_link(self, db, alice, bob, carol, csv_resource):
        svc = LinkService(db)
        link = svc.create_link(alice, "csv", "abc123", ["view"], max_access_count=1)

        result = svc.redeem_link(link.token, bob)
        assert result.permissions == ["view"]
        assert result.grant.grantee == "bob"
        assert result.grant.source == "link"

        with pytest.raises(ExhaustedError):
            svc.redeem_link(link.token, carol)

        db.expire_all()
        assert db.get(ShareLink, link.id).access_count == 1
        [listed] = svc.list_links(alice, "csv", "abc123")
        assert listed.usable is False
        perms = PermissionService(db).effective_permissions("csv", "abc123", carol.identities)
        assert perms == []

    def test_every_redemption_counts(self, db, alice, bob, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"], max_access_count=2)
        svc.redeem_link(link.token, bob)
        svc.redeem_link(link.token, bob)
        with pytest.raises(ExhaustedError):
            svc.redeem_link(link.token, bob)
        assert db.query(PermissionGrant).filter(PermissionGrant.grantee == "bob").count() == 1

    def test_redeem_overwrites_existing_grant(self, db, alice, bob, report):
        PermissionService(db).grant_access("report", "r-42", "bob", ["view", "edit"], alice)
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        svc.redeem_link(link.token, bob)
        perms = PermissionService(db).effective_permissions("report", "r-42", bob.identities)
        assert perms == ["view"]

    def test_owner_redemption_adds_no_grant(self, db, alice, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        result = svc.redeem_link(link.token, alice)
        assert result.grant is None
        assert result.link.access_count == 1
        assert db.query(PermissionGrant).count() == 0
        perms = PermissionService(db).effective_permissions("report", "r-42", alice.identities)
        assert set(perms) == {"view", "edit", "share", "delete"}

    def test_anonymous_redemption_counts_without_grant(self, db, alice, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        result = svc.redeem_link(link.token, None)
        assert result.grant is None
        assert result.link.access_count == 1
        assert db.query(PermissionGrant).count() == 0

    def test_unknown_token(self, db):
        with pytest.raises(LinkNotFoundError):
            LinkService(db).redeem_link("no-such-token", None)

    def test_token_for_other_resource_rejected(self, db, alice, bob, report, csv_resource):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        with pytest.raises(ValidationError):
            svc.redeem_link(link.token, bob, "csv", "abc123")
        db.expire_all()
        assert db.get(ShareLink, link.id).access_count == 0

    def test_expired_link(self, db, clock, alice, bob, report):
        svc = LinkService(db, clock=clock)
        link = svc.create_link(alice, "report", "r-42", ["view"], expires_in_days=1)
        clock.advance(days=2)
        with pytest.raises(ExpiredError):
            svc.redeem_link(link.token, bob)

    def test_revoked_beats_expired_and_exhausted(self, db, clock, alice, bob, carol, report):
        svc = LinkService(db, clock=clock)
        link = svc.create_link(alice, "report", "r-42", ["view"], expires_in_days=1, max_access_count=1)
        svc.redeem_link(link.token, bob)
        svc.revoke_link(link.id, alice)
        clock.advance(days=2)
        with pytest.raises(RevokedError):
            svc.redeem_link(link.token, carol)


class TestConcurrentRedemption:

    def test_exactly_max_of_twice_as_many_succeed(self, db, alice, report):
        link = LinkService(db).create_link(alice, "report", "r-42", ["view"], max_access_count=3)
        token = link.token

        def redeem(i: int) -> str:
            session = SessionLocal()
            try:
                LinkService(session).redeem_link(token, AuthContext(user_id=f"user-{i}"))
                return "ok"
            except ExhaustedError:
                return "exhausted"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(redeem, range(6)))

        assert outcomes.count("ok") == 3
        assert outcomes.count("exhausted") == 3
        db.expire_all()
        assert db.get(ShareLink, link.id).access_count == 3
        assert db.query(PermissionGrant).count() == 3


class TestRevokeLink:

    def test_creator_revokes(self, db, alice, bob, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        revoked = svc.revoke_link(link.id, alice)
        assert revoked.is_active is False
        assert revoked.revoked_at is not None
        with pytest.raises(RevokedError):
            svc.redeem_link(link.token, bob)

    def test_owner_revokes_collaborators_link(self, db, alice, bob, report):
        PermissionService(db).grant_access("report", "r-42", "bob", ["view", "share"], alice)
        svc = LinkService(db)
        link = svc.create_link(bob, "report", "r-42", ["view"])
        assert svc.revoke_link(link.id, alice).is_active is False

    def test_stranger_cannot_revoke(self, db, alice, carol, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        with pytest.raises(UnauthorizedError):
            svc.revoke_link(link.id, carol)

    def test_revoke_twice_is_noop(self, db, alice, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"])
        first = svc.revoke_link(link.id, alice).revoked_at
        assert svc.revoke_link(link.id, alice).revoked_at == first

    def test_unknown_link(self, db, alice):
        with pytest.raises(LinkNotFoundError):
            LinkService(db).revoke_link("missing", alice)


class TestLinkMetadata:

    def test_public_lookup_does_not_count(self, db, alice, report):
        svc = LinkService(db)
        link = svc.create_link(alice, "report", "r-42", ["view"], max_access_count=1)
        meta = svc.get_link(link.token)
        assert meta.usable is True
        assert meta.reason is None
        db.expire_all()
        assert db.get(ShareLink, link.id).access_count == 0

    def test_public_lookup_reports_reason(self, db, clock, alice, report):
        svc = LinkService(db, clock=clock)
        link = svc.create_link(alice, "report", "r-42", ["view"], expires_in_days=1)
        clock.advance(days=1, minutes=1)
        meta = svc.get_link(link.token)
        assert meta.usable is False
        assert meta.reason == "expired"

    def test_list_without_resource_returns_own_links(self, db, alice, bob, report, csv_resource):
        PermissionService(db).grant_access("report", "r-42", "bob", ["share"], alice)
        svc = LinkService(db)
        svc.create_link(alice, "csv", "abc123", ["view"])
        svc.create_link(bob, "report", "r-42", ["view"])
        mine = svc.list_links(alice)
        assert [(link.resource_type, link.resource_id) for link in mine] == [("csv", "abc123")]

    def test_list_for_resource_requires_share(self, db, alice, bob, report):
        PermissionService(db).grant_access("report", "r-42", "bob", ["view"], alice)
        with pytest.raises(UnauthorizedError):
            LinkService(db).list_links(bob, "report", "r-42")
