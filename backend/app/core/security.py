"""
Identity lookup over bearer JWTs.

Token issuance belongs to the auth provider; `create_access_token` exists for
tests and local tooling only.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.errors import AuthError
from app.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_user_id(token: str) -> Optional[str]:
    """Return the `sub` claim of a valid token, else None."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info("token_rejected", reason=type(e).__name__)
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) and sub else None


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Viewer id for anonymous-friendly endpoints (e.g. sticky routing)."""
    if credentials is None:
        return None
    return decode_user_id(credentials.credentials)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None:
        raise AuthError("Unauthorized")
    user_id = decode_user_id(credentials.credentials)
    if not user_id:
        raise AuthError("Unauthorized")
    return user_id
