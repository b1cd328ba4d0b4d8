"""
Bearer token authentication.

Access tokens are JWTs whose ``jti`` names a persisted ``UserAccessToken``
row; deleting the row revokes the token.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from wecarry.core.database import get_session
from wecarry.core.errors import NotFound
from wecarry.models.user import User
from wecarry.services.users import resolve_access_token

log = structlog.get_logger()

bearer_header = APIKeyHeader(name="Authorization", auto_error=False)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Depends(bearer_header),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the bearer token to a user, or fail with 401."""
    token = _bearer_token(authorization)
    try:
        user = await resolve_access_token(session, token)
    except NotFound:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user
