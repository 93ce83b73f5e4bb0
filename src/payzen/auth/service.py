"""
Authentication business logic.

Handles user lookups, the wallet challenge/response protocol, and registration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from payzen.auth.address_validation import normalize_address
from payzen.auth.signature import verify_signature
from payzen.db.models import User
from payzen.errors import AddressAlreadyRegistered, Conflict, UsernameTaken

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from payzen.auth.nonces import NonceStore

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Challenge wire format
# ---------------------------------------------------------------------------

# Version 1 of the signed challenge. Clients sign this exact text; changing it
# invalidates every outstanding nonce, so bump CHALLENGE_VERSION alongside.
CHALLENGE_VERSION = 1
CHALLENGE_TEMPLATE = "Sign this message to authenticate: {nonce}"
_CHALLENGE_PATTERN = re.compile(r"Sign this message to authenticate: (?P<nonce>[0-9a-f]{64})")


def build_challenge(nonce: str) -> str:
    """Embed a nonce in the challenge message."""
    return CHALLENGE_TEMPLATE.format(nonce=nonce)


def parse_challenge(message: str) -> str | None:
    """Extract the nonce from a challenge message, or None if it does not match."""
    match = _CHALLENGE_PATTERN.fullmatch(message.strip())
    return match.group("nonce") if match else None


@dataclass(frozen=True)
class Challenge:
    nonce: str
    message: str


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login attempt.

    ``valid`` with ``user=None`` means the signature and nonce checked out but
    the wallet has not registered yet.
    """

    valid: bool
    user: User | None = None


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_address(db: AsyncSession, wallet_address: str) -> User | None:
    """Fetch a user by wallet address (case-insensitive)."""
    result = await db.execute(select(User).where(User.wallet_address == wallet_address.lower()))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    """Fetch a user by username (case-insensitive)."""
    result = await db.execute(select(User).where(User.username == username.lower()))
    return result.scalar_one_or_none()


async def is_username_available(db: AsyncSession, username: str) -> bool:
    """True if no user holds this username (case-insensitive)."""
    result = await db.execute(select(User.id).where(User.username == username.lower()))
    return result.first() is None


async def _find_collision(db: AsyncSession, wallet_address: str, username: str) -> Conflict | None:
    result = await db.execute(
        select(User).where(or_(User.wallet_address == wallet_address, User.username == username))
    )
    existing = result.scalars().all()
    if any(u.wallet_address == wallet_address for u in existing):
        return AddressAlreadyRegistered()
    if any(u.username == username for u in existing):
        return UsernameTaken()
    return None


# ---------------------------------------------------------------------------
# Wallet challenge/response protocol
# ---------------------------------------------------------------------------


class AuthProtocol:
    """Nonce challenge, signature login, and registration."""

    def __init__(self, db: AsyncSession, nonces: NonceStore) -> None:
        self._db = db
        self._nonces = nonces

    async def challenge(self, wallet_address: str) -> Challenge:
        """
        Issue a signing challenge for a wallet.

        Raises:
            InvalidAddress: If the address is malformed.
        """
        address = normalize_address(wallet_address)
        nonce = await self._nonces.issue(address)
        return Challenge(nonce=nonce, message=build_challenge(nonce))

    async def prove_control(self, wallet_address: str, signature: str, message: str) -> bool:
        """
        Verify the signature and consume the embedded nonce.

        Fails closed: any mismatch, unparseable message, or unknown / used /
        expired nonce returns False.
        """
        if not verify_signature(message, signature, wallet_address):
            logger.info("auth_signature_mismatch", wallet_address=wallet_address.lower())
            return False

        nonce = parse_challenge(message)
        if nonce is None:
            logger.info("auth_message_malformed", wallet_address=wallet_address.lower())
            return False

        if not await self._nonces.consume(wallet_address, nonce):
            logger.info("auth_nonce_rejected", wallet_address=wallet_address.lower())
            return False
        return True

    async def authenticate(self, wallet_address: str, signature: str, message: str) -> AuthResult:
        """Verify a signed challenge and look up the wallet's user."""
        if not await self.prove_control(wallet_address, signature, message):
            return AuthResult(valid=False)

        user = await get_user_by_address(self._db, wallet_address)
        return AuthResult(valid=True, user=user)

    async def register(
        self,
        wallet_address: str,
        full_name: str,
        username: str,
        business_name: str | None = None,
        business_type: str | None = None,
    ) -> User:
        """
        Create a user for a wallet.

        Raises:
            InvalidAddress: If the address is malformed.
            AddressAlreadyRegistered: If the wallet already has a user.
            UsernameTaken: If the username is held by another wallet.
        """
        address = normalize_address(wallet_address)
        username = username.lower()

        collision = await _find_collision(self._db, address, username)
        if collision is not None:
            raise collision

        user = User(
            wallet_address=address,
            full_name=full_name,
            username=username,
            business_name=business_name or None,
            business_type=business_type or None,
            created_at=datetime.now(timezone.utc),
        )
        self._db.add(user)
        try:
            await self._db.flush()
        except IntegrityError:
            # Lost a race against a concurrent registration
            await self._db.rollback()
            collision = await _find_collision(self._db, address, username)
            raise (collision or Conflict("Registration conflict")) from None

        logger.info("user_registered", user_id=user.id, wallet_address=address, username=username)
        return user

    async def username_available(self, username: str) -> bool:
        return await is_username_available(self._db, username)
