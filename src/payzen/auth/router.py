"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payzen.auth.dependencies import get_current_user
from payzen.auth.jwt import TokenService
from payzen.auth.schemas import (
    AuthResponse,
    LoginRequest,
    NonceRequest,
    NonceResponse,
    RegisterRequest,
    UsernameCheckResponse,
    UserResponse,
)
from payzen.auth.service import AuthProtocol
from payzen.config import Settings
from payzen.db.models import User
from payzen.dependencies import get_app_settings, get_auth_protocol, get_db, get_token_service
from payzen.errors import Forbidden, NotFound, Unauthorized, ValidationError
from payzen.responses import ok

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _auth_response(tokens: TokenService, user: User) -> dict[str, Any]:
    return AuthResponse(
        token=tokens.issue(user),
        expires_in=tokens.lifetime_seconds,
        user=UserResponse.model_validate(user),
    ).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Wallet challenge / login
# ---------------------------------------------------------------------------


@router.post("/nonce")
async def nonce(
    body: NonceRequest,
    protocol: AuthProtocol = Depends(get_auth_protocol),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Issue a signing challenge for a wallet."""
    challenge = await protocol.challenge(body.wallet_address)
    await db.commit()
    return ok(
        NonceResponse(
            nonce=challenge.nonce,
            message=challenge.message,
            expires_in=settings.nonce_ttl_seconds,
        ).model_dump()
    )


@router.post("/login")
async def login(
    body: LoginRequest,
    protocol: AuthProtocol = Depends(get_auth_protocol),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> dict[str, Any]:
    """Exchange a signed challenge for a session token."""
    result = await protocol.authenticate(body.wallet_address, body.signature, body.message)
    if not result.valid:
        msg = "Invalid signature or expired nonce"
        raise Unauthorized(msg)

    # The nonce is spent even when the wallet still has to register
    await db.commit()

    if result.user is None:
        msg = "User not registered"
        raise NotFound(msg, hint="Please complete registration", data={"needs_registration": True})

    logger.info("user_logged_in", user_id=result.user.id)
    return ok(_auth_response(tokens, result.user), message="Login successful")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    protocol: AuthProtocol = Depends(get_auth_protocol),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Create a user for a wallet and sign them in."""
    if settings.registration_requires_signature:
        if not body.signature or not body.message:
            msg = "signature and message are required"
            raise ValidationError(msg)
        if not await protocol.prove_control(body.wallet_address, body.signature, body.message):
            msg = "Invalid signature or expired nonce"
            raise Forbidden(msg)
        # Spend the nonce even if registration is then refused
        await db.commit()

    user = await protocol.register(
        body.wallet_address,
        full_name=body.full_name,
        username=body.username,
        business_name=body.business_name,
        business_type=body.business_type,
    )
    await db.commit()
    return ok(_auth_response(tokens, user), message="Registration successful")


@router.get("/username/check")
async def check_username(
    username: str = Query(..., min_length=1, max_length=30),
    protocol: AuthProtocol = Depends(get_auth_protocol),
) -> dict[str, Any]:
    """Whether a username is free (case-insensitive)."""
    available = await protocol.username_available(username.strip())
    return ok(UsernameCheckResponse(username=username, available=available).model_dump())


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> dict[str, Any]:
    """The authenticated user's profile."""
    return ok({"user": UserResponse.model_validate(user).model_dump(mode="json")})
