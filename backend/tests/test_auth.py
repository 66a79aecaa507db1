"""
Authentication and authorization tests.

Verifies:
- bcrypt password hashing and session token lifecycle
- require_actor guards every mutation
- the static role -> capability map
"""

from datetime import timedelta

import pytest

from posledger.errors import AuthenticationError, AuthorizationError, ConflictError, ValidationError
from posledger.extensions import db
from posledger.models import SessionToken
from posledger.services import auth_service, permission_service
from posledger.services.auth_service import (
    authenticate,
    create_user,
    hash_password,
    require_actor,
    resolve_actor,
    revoke_session,
    verify_password,
)
from posledger.time_utils import utcnow

from conftest import PASSWORD


class TestPasswords:
    def test_hash_and_verify(self, app):
        hashed = hash_password("Sup3rSecret!")
        assert hashed.startswith("$2")
        assert verify_password("Sup3rSecret!", hashed)
        assert not verify_password("wrong-password", hashed)

    def test_short_password_rejected(self, app):
        with pytest.raises(ValidationError):
            hash_password("short")

    def test_garbage_hash_does_not_verify(self, app):
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestSessions:
    def test_authenticate_and_resolve(self, admin):
        session, token = authenticate("admin", PASSWORD)

        assert session.token_hash == auth_service.hash_token(token)
        assert session.token_hash != token
        assert resolve_actor(token).id == admin.id
        assert admin.last_login_at is not None

    def test_wrong_password(self, admin):
        with pytest.raises(AuthenticationError):
            authenticate("admin", "not-the-password")
        assert db.session.query(SessionToken).count() == 0

    def test_unknown_user(self, db_session):
        with pytest.raises(AuthenticationError):
            authenticate("nobody", PASSWORD)

    def test_revoked_token_rejected(self, admin):
        _, token = authenticate("admin", PASSWORD)
        revoke_session(token)
        with pytest.raises(AuthenticationError):
            resolve_actor(token)

    def test_expired_token_rejected(self, admin):
        session, token = authenticate("admin", PASSWORD)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()
        with pytest.raises(AuthenticationError):
            resolve_actor(token)

    @pytest.mark.parametrize("token", [None, "", "deadbeef"])
    def test_missing_or_unknown_token(self, db_session, token):
        with pytest.raises(AuthenticationError):
            resolve_actor(token)

    def test_inactive_user_cannot_log_in(self, cashier):
        _, token = authenticate("cashier", PASSWORD)
        cashier.is_active = False
        db.session.commit()

        with pytest.raises(AuthenticationError):
            resolve_actor(token)
        with pytest.raises(AuthenticationError):
            authenticate("cashier", PASSWORD)


class TestUsers:
    def test_duplicate_username(self, admin):
        with pytest.raises(ConflictError):
            create_user("admin", PASSWORD)

    def test_invalid_role(self, db_session):
        with pytest.raises(ValidationError):
            create_user("auditor", PASSWORD, role="auditor")

    def test_require_actor(self, admin):
        assert require_actor(admin.id).id == admin.id
        for bad in (None, 0, 99999):
            with pytest.raises(AuthenticationError):
                require_actor(bad)

    def test_inactive_actor_rejected(self, manager):
        manager.is_active = False
        db.session.commit()
        with pytest.raises(AuthenticationError):
            require_actor(manager.id)


class TestPermissions:
    def test_cashier_capabilities(self, cashier):
        assert permission_service.has_permission(cashier, "sales", "create")
        assert permission_service.has_permission(cashier, "customers", "collect")
        assert not permission_service.has_permission(cashier, "sales", "void")
        assert not permission_service.has_permission(cashier, "purchases", "void")
        assert not permission_service.has_permission(cashier, "stock", "adjust")

    def test_manager_cannot_restore(self, manager):
        assert permission_service.has_permission(manager, "purchases", "void")
        assert permission_service.has_permission(manager, "backup", "export")
        with pytest.raises(AuthorizationError):
            permission_service.require_permission(manager, "backup", "restore")

    def test_admin_holds_everything(self, admin):
        for module, action in permission_service.CAPABILITY_DEFINITIONS:
            permission_service.require_permission(admin, module, action)

    def test_unknown_capability_is_a_programming_error(self, admin):
        with pytest.raises(ValueError):
            permission_service.require_permission(admin, "reports", "launch")

    def test_inactive_user_has_no_capabilities(self, admin):
        admin.is_active = False
        assert permission_service.get_user_capabilities(admin) == frozenset()
