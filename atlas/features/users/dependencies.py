"""
FastAPI dependencies for resolving the acting principal.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.core.database.engine import get_db
from atlas.features.users.auth import verify_jwt_token
from atlas.features.users.models import User
from atlas.features.users.schemas import Principal


security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from the bearer token.
    
    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    payload = verify_jwt_token(credentials.credentials)
    user_id = payload.get("sub")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or deactivated user",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def get_current_principal(
    user: Annotated[User, Depends(get_current_user)]
) -> Principal:
    """Reduce the user to the id and role the permission engine works with."""
    return Principal(id=user.id, role_id=user.role_id)


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
