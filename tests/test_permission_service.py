"""Unit tests for PermissionService: resource registry, evaluation and grants."""

import pytest

from sharing_api.core.auth import AuthContext
from sharing_api.exceptions import (
    ConflictError,
    GrantNotFoundError,
    ResourceNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from sharing_api.models.grant import PermissionGrant
from sharing_api.services.permission_service import PermissionService


class TestRegisterResource:

    def test_register_and_get(self, db, alice):
        svc = PermissionService(db)
        svc.register_resource("course", "c-1", alice, title="Options 101")
        resource = svc.get_resource("course", "c-1")
        assert resource.owner_id == "alice"
        assert resource.title == "Options 101"

    def test_idempotent_for_same_owner(self, db, alice):
        svc = PermissionService(db)
        first = svc.register_resource("course", "c-1", alice)
        second = svc.register_resource("course", "c-1", alice, title="Renamed")
        assert first.resource_id == second.resource_id
        assert second.title == "Renamed"

    def test_other_owner_conflicts(self, db, alice, bob):
        svc = PermissionService(db)
        svc.register_resource("course", "c-1", alice)
        with pytest.raises(ConflictError):
            svc.register_resource("course", "c-1", bob)

    def test_unknown_type_rejected(self, db, alice):
        with pytest.raises(ValidationError):
            PermissionService(db).register_resource("spreadsheet", "s-1", alice)

    def test_unregistered_resource_not_found(self, db):
        with pytest.raises(ResourceNotFoundError):
            PermissionService(db).get_resource("report", "nope")


class TestEffectivePermissions:

    def test_owner_holds_everything(self, db, alice, report):
        perms = PermissionService(db).effective_permissions("report", "r-42", alice.identities)
        assert perms == ["view", "edit", "share", "delete"]

    def test_stranger_holds_nothing(self, db, bob, report):
        svc = PermissionService(db)
        assert svc.effective_permissions("report", "r-42", bob.identities) == []
        assert svc.has_permission("report", "r-42", bob.identities, "view") is False

    def test_unknown_resource_holds_nothing(self, db, alice):
        assert PermissionService(db).effective_permissions("report", "missing", alice.identities) == []

    def test_union_over_user_id_and_email_grants(self, db, alice, bob, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view"], alice)
        # A grant created for bob's e-mail before bob was a known user.
        svc.grant_access("report", "r-42", "bob@x.com", ["edit"], alice)
        assert svc.effective_permissions("report", "r-42", bob.identities) == ["view", "edit"]

    def test_flags_are_independent(self, db, alice, bob, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["edit"], alice)
        assert svc.has_permission("report", "r-42", bob.identities, "edit") is True
        assert svc.has_permission("report", "r-42", bob.identities, "view") is False

    def test_unknown_permission_name_rejected(self, db, alice, report):
        with pytest.raises(ValidationError):
            PermissionService(db).has_permission("report", "r-42", alice.identities, "admin")


class TestGrantAccess:

    def test_regrant_replaces_permission_set(self, db, alice, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view", "edit"], alice)
        svc.grant_access("report", "r-42", "bob", ["view"], alice)

        rows = db.query(PermissionGrant).filter(PermissionGrant.grantee == "bob").all()
        assert len(rows) == 1
        assert rows[0].permissions == ["view"]

    def test_email_of_known_user_resolves_to_user_id(self, db, alice, known_users, report):
        grant = PermissionService(db).grant_access("report", "r-42", "Bob@X.com", ["view"], alice)
        assert grant.grantee == "bob"
        assert grant.source == "direct"
        assert grant.granted_by == "alice"

    def test_requires_share(self, db, alice, bob, carol, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view", "edit"], alice)
        with pytest.raises(UnauthorizedError):
            svc.grant_access("report", "r-42", "carol", ["view"], bob)

    def test_collaborator_with_share_may_grant(self, db, alice, bob, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view", "share"], alice)
        grant = svc.grant_access("report", "r-42", "carol", ["view"], bob)
        assert grant.granted_by == "bob"

    def test_unregistered_resource_is_not_found(self, db, alice):
        with pytest.raises(ResourceNotFoundError):
            PermissionService(db).grant_access("report", "ghost", "bob", ["view"], alice)


class TestRevokeAccess:

    def test_owner_revokes_and_grantee_keeps_nothing(self, db, alice, bob, report):
        svc = PermissionService(db)
        grant = svc.grant_access("report", "r-42", "bob", ["view", "edit"], alice)
        svc.revoke_access(grant.id, alice)
        assert svc.effective_permissions("report", "r-42", bob.identities) == []

    def test_unknown_grant(self, db, alice):
        with pytest.raises(GrantNotFoundError):
            PermissionService(db).revoke_access("no-such-grant", alice)

    def test_non_owner_cannot_revoke(self, db, alice, bob, carol, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view", "share"], alice)
        carol_grant = svc.grant_access("report", "r-42", "carol", ["view"], alice)
        with pytest.raises(UnauthorizedError):
            svc.revoke_access(carol_grant.id, bob)

    def test_delegated_revoke_allows_share_holder(self, db, alice, bob, carol, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view", "share"], alice)
        carol_grant = svc.grant_access("report", "r-42", "carol", ["view"], alice)

        PermissionService(db, allow_delegated_revoke=True).revoke_access(carol_grant.id, bob)
        assert svc.effective_permissions("report", "r-42", carol.identities) == []

    def test_delegated_revoke_still_needs_share(self, db, alice, bob, carol, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view", "edit"], alice)
        carol_grant = svc.grant_access("report", "r-42", "carol", ["view"], alice)
        with pytest.raises(UnauthorizedError):
            PermissionService(db, allow_delegated_revoke=True).revoke_access(carol_grant.id, bob)


class TestListCollaborators:

    def test_viewer_can_list(self, db, alice, bob, report):
        svc = PermissionService(db)
        svc.grant_access("report", "r-42", "bob", ["view"], alice)
        svc.grant_access("report", "r-42", "carol", ["edit"], alice)
        grantees = [g.grantee for g in svc.list_collaborators("report", "r-42", bob)]
        assert sorted(grantees) == ["bob", "carol"]

    def test_stranger_cannot_list(self, db, report):
        with pytest.raises(UnauthorizedError):
            PermissionService(db).list_collaborators("report", "r-42", AuthContext(user_id="mallory"))
