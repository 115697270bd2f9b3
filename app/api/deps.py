"""API dependencies for authentication and common operations."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.permissions import Principal
from app.core.security import verify_token
from app.database import get_db
from app.models.user import User

# Security scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


async def _user_from_credentials(
    credentials: HTTPAuthorizationCredentials, db: AsyncSession
) -> User:
    payload = verify_token(credentials.credentials, token_type="access")
    try:
        user_id = UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthenticationError("Jeton invalide")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("Utilisateur introuvable")
    if not user.is_active:
        raise AuthenticationError("Ce compte est désactivé")
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get the current authenticated user from JWT token."""
    if not credentials:
        raise AuthenticationError()
    return await _user_from_credentials(credentials, db)


async def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User | None:
    """Current user when a bearer token is sent, otherwise None.

    A token that is sent but invalid is still rejected.
    """
    if not credentials:
        return None
    return await _user_from_credentials(credentials, db)


async def get_current_principal(
    current_user: Annotated[User, Depends(get_current_user)],
) -> Principal:
    return Principal.from_user(current_user)


async def get_optional_principal(
    current_user: Annotated[User | None, Depends(get_optional_user)],
) -> Principal | None:
    return Principal.from_user(current_user) if current_user else None


async def get_current_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Get current principal and verify they are an admin."""
    if not principal.is_admin:
        raise AuthorizationError("Accès réservé aux administrateurs")
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
OptionalPrincipal = Annotated[Principal | None, Depends(get_optional_principal)]
AdminPrincipal = Annotated[Principal, Depends(get_current_admin)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
