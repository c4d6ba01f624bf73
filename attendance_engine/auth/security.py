from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from attendance_engine.core.config import settings


def create_access_token(*, subject: Dict, expires_minutes: Optional[int] = None) -> str:
    """Sign a token for `subject`. Tokens are normally issued by the identity service; tests mint their own."""
    minutes = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    claims = dict(subject)
    claims["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_user_id(token: str) -> Optional[UUID]:
    """User id carried by a valid token (`user_id` or `sub` claim); None when the token is unusable."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    raw = claims.get("user_id") or claims.get("sub")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None
