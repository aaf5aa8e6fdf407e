"""
Authentication dependencies for FastAPI.

The identity itself is issued upstream; this module turns a verified bearer
token into a `CurrentUser`.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from freelance_backend.app.core.jwt import decode_access_token

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    user_id: int
    username: Optional[str] = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> CurrentUser:
    """
    FastAPI dependency for JWT authentication.

    Returns:
        Caller identity taken from the `user_id` and `sub` claims

    Raises:
        HTTPException: 401 if the token is missing, invalid, expired or lacks user_id
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise _unauthorized("Invalid token payload")

    return CurrentUser(user_id=user_id, username=payload.get("sub"))
