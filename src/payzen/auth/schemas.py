"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

WALLET_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"


# ---------------------------------------------------------------------------
# Wallet challenge
# ---------------------------------------------------------------------------


class NonceRequest(BaseModel):
    """Request a signing challenge for a wallet."""

    wallet_address: str = Field(..., pattern=WALLET_ADDRESS_PATTERN)


class NonceResponse(BaseModel):
    """Challenge nonce and the exact message the wallet must sign."""

    nonce: str
    message: str
    expires_in: int


class LoginRequest(BaseModel):
    """Signed challenge."""

    wallet_address: str = Field(..., pattern=WALLET_ADDRESS_PATTERN)
    signature: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """
    Create a user for a wallet.

    ``signature`` and ``message`` are required only when the server enforces
    proof of control at registration.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    wallet_address: str = Field(..., pattern=WALLET_ADDRESS_PATTERN)
    full_name: str = Field(..., min_length=2, max_length=255)
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    business_name: str | None = Field(None, max_length=255)
    business_type: str | None = Field(None, max_length=100)
    signature: str | None = None
    message: str | None = None

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        """Usernames are case-insensitive; store lower-case."""
        return v.lower()


class UsernameCheckResponse(BaseModel):
    username: str
    available: bool


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user profile."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    wallet_address: str
    full_name: str
    username: str
    business_name: str | None = None
    business_type: str | None = None
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    """Session token plus the authenticated user."""

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
