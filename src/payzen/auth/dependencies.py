"""FastAPI authentication dependencies."""

from __future__ import annotations

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from payzen.auth.jwt import TokenPayload, TokenService
from payzen.auth.service import get_user_by_id
from payzen.db.models import User
from payzen.dependencies import get_db, get_token_service
from payzen.errors import Forbidden, NotFound, Unauthorized

_bearer = HTTPBearer(auto_error=False)


async def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    tokens: TokenService = Depends(get_token_service),
) -> TokenPayload:
    """
    Validate the bearer token.

    Raises:
        Unauthorized: No bearer token was sent (401).
        Forbidden: The token is invalid or expired (403).
    """
    if credentials is None or not credentials.credentials:
        msg = "Access token required"
        raise Unauthorized(msg)

    payload = tokens.validate(credentials.credentials)
    if payload is None:
        msg = "Invalid or expired token"
        raise Forbidden(msg)
    return payload


async def get_current_user(
    payload: TokenPayload = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the token subject to its user. A deleted user is a 404."""
    user = await get_user_by_id(db, payload.user_id)
    if user is None:
        msg = "User not found"
        raise NotFound(msg)
    return user
