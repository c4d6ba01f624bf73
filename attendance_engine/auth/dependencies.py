from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.models import Role, User
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.auth.security import decode_user_id
from attendance_engine.db.session import get_db

# Tokens are issued by the identity service; this URL only feeds the OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def _role_of(db: AsyncSession, user: User) -> Optional[Role]:
    """Explicit role_id wins; otherwise fall back to the role named like the user's role label."""
    if user.role_id:
        return await db.get(Role, user.role_id)
    result = await db.execute(select(Role).where(Role.name == user.role))
    return result.scalar_one_or_none()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the caller and the permission map of their role."""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user_id = decode_user_id(token)
    if user_id is None:
        raise unauthorized
    user = await db.get(User, user_id)
    if user is None or user.status != "ACTIVE":
        raise unauthorized

    role = await _role_of(db, user)
    return CurrentUser(
        id=user.id,
        role=user.role,
        role_id=role.id if role else None,
        permissions=dict(role.permissions or {}) if role else {},
    )
