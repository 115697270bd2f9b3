"""Role-based access control and permissions.

Managers call ``ensure_permission`` before any business-rule validation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from app.core.exceptions import AuthorizationError

if TYPE_CHECKING:
    from app.models.user import User


class UserRole(str, Enum):
    """User roles in the system."""

    CLIENT = "client"
    ADMIN = "admin"


class Permission(str, Enum):
    """System permissions."""

    # Appointment permissions
    BOOK_RENDEZVOUS = "book_rendezvous"
    VIEW_OWN_RENDEZVOUS = "view_own_rendezvous"
    CONFIRM_OWN_RENDEZVOUS = "confirm_own_rendezvous"
    CANCEL_OWN_RENDEZVOUS = "cancel_own_rendezvous"
    RESCHEDULE_OWN_RENDEZVOUS = "reschedule_own_rendezvous"

    # Procedure permissions
    VIEW_OWN_PROCEDURE = "view_own_procedure"

    # Admin permissions
    VIEW_ALL_RENDEZVOUS = "view_all_rendezvous"
    COMPLETE_RENDEZVOUS = "complete_rendezvous"
    DELETE_RENDEZVOUS = "delete_rendezvous"
    VIEW_ALL_PROCEDURES = "view_all_procedures"
    MANAGE_PROCEDURES = "manage_procedures"


# Role to permissions mapping
ROLE_PERMISSIONS: dict[UserRole, set[Permission]] = {
    UserRole.CLIENT: {
        Permission.BOOK_RENDEZVOUS,
        Permission.VIEW_OWN_RENDEZVOUS,
        Permission.CONFIRM_OWN_RENDEZVOUS,
        Permission.CANCEL_OWN_RENDEZVOUS,
        Permission.RESCHEDULE_OWN_RENDEZVOUS,
        Permission.VIEW_OWN_PROCEDURE,
    },
    UserRole.ADMIN: {
        # Admins have all permissions
        perm for perm in Permission
    },
}


@dataclass(frozen=True)
class Principal:
    """Verified caller identity handed to the managers."""

    id: UUID
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: "User") -> "Principal":
        return cls(id=user.id, email=user.email.lower(), role=UserRole(user.role))


def has_permission(role: UserRole, permission: Permission) -> bool:
    """Check if a role has a specific permission."""
    return permission in ROLE_PERMISSIONS.get(role, set())


def ensure_permission(actor: Principal | None, permission: Permission) -> Principal:
    """Raise AuthorizationError unless the actor holds the permission."""
    if actor is None or not has_permission(actor.role, permission):
        raise AuthorizationError(
            f"Permission '{permission.value}' requise pour cette action"
        )
    return actor


def is_owner(actor: Principal, user_id: UUID | None, email: str | None) -> bool:
    """An actor owns a record linked to their account or to their e-mail."""
    if user_id is not None and user_id == actor.id:
        return True
    return bool(email) and email.lower() == actor.email.lower()


def ensure_owner_or_admin(
    actor: Principal | None,
    user_id: UUID | None,
    email: str | None,
    own_permission: Permission,
) -> Principal:
    """Admins pass; clients need the ``own_*`` permission and ownership."""
    if actor is not None and actor.is_admin:
        return actor
    ensure_permission(actor, own_permission)
    if not is_owner(actor, user_id, email):
        raise AuthorizationError("Vous ne pouvez agir que sur vos propres dossiers")
    return actor
