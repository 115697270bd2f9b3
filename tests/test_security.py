import uuid
from datetime import timedelta

import pytest

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.logging_config import mask_email
from app.core.permissions import (
    ROLE_PERMISSIONS,
    Permission,
    Principal,
    UserRole,
    ensure_owner_or_admin,
    ensure_permission,
    has_permission,
)
from app.core.security import create_access_token, create_user_token, verify_token


def principal(role=UserRole.CLIENT, email="amina@example.com"):
    return Principal(id=uuid.uuid4(), email=email, role=role)


class TestPermissions:
    def test_admin_has_everything(self):
        assert all(has_permission(UserRole.ADMIN, p) for p in Permission)

    def test_client_cannot_manage(self):
        assert not has_permission(UserRole.CLIENT, Permission.MANAGE_PROCEDURES)
        assert not has_permission(UserRole.CLIENT, Permission.COMPLETE_RENDEZVOUS)
        assert has_permission(UserRole.CLIENT, Permission.CANCEL_OWN_RENDEZVOUS)

    def test_admin_only_permissions(self):
        admin_only = set(Permission) - ROLE_PERMISSIONS[UserRole.CLIENT]
        assert admin_only == {
            Permission.VIEW_ALL_RENDEZVOUS,
            Permission.COMPLETE_RENDEZVOUS,
            Permission.DELETE_RENDEZVOUS,
            Permission.VIEW_ALL_PROCEDURES,
            Permission.MANAGE_PROCEDURES,
        }

    def test_missing_actor_is_unauthorized(self):
        with pytest.raises(AuthorizationError):
            ensure_permission(None, Permission.BOOK_RENDEZVOUS)

    def test_ownership_by_id_or_email(self):
        actor = principal()
        assert ensure_owner_or_admin(actor, actor.id, None, Permission.VIEW_OWN_RENDEZVOUS)
        assert ensure_owner_or_admin(actor, None, "AMINA@example.com", Permission.VIEW_OWN_RENDEZVOUS)
        with pytest.raises(AuthorizationError):
            ensure_owner_or_admin(actor, uuid.uuid4(), "x@example.com", Permission.VIEW_OWN_RENDEZVOUS)

    def test_admin_bypasses_ownership(self):
        actor = principal(UserRole.ADMIN)
        assert ensure_owner_or_admin(actor, uuid.uuid4(), "x@example.com", Permission.VIEW_OWN_RENDEZVOUS)


class TestTokens:
    def test_round_trip(self):
        user_id = str(uuid.uuid4())
        payload = verify_token(create_user_token(user_id, "a@example.com", "client"))
        assert payload["sub"] == user_id
        assert payload["role"] == "client"

    def test_expired_token(self):
        token = create_access_token({"sub": "x"}, expires_delta=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError):
            verify_token(token)

    def test_wrong_type(self):
        token = create_access_token({"sub": "x"})
        with pytest.raises(AuthenticationError):
            verify_token(token, token_type="refresh")


@pytest.mark.parametrize(
    "email,masked",
    [
        ("jean.dupont@example.fr", "j***t@example.fr"),
        ("ab@example.fr", "a*@example.fr"),
        (None, "unknown_email"),
        ("no-at-sign", "invalid_email"),
    ],
)
def test_mask_email(email, masked):
    assert mask_email(email) == masked
