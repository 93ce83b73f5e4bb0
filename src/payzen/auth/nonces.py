"""Challenge nonce storage.

Nonces live in the ``auth_nonces`` table. Consumption is a single conditional
UPDATE so two concurrent logins presenting the same nonce cannot both win.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, update

from payzen.db.models import AuthNonce

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

NONCE_BYTES = 32
DEFAULT_NONCE_TTL_SECONDS = 300


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NonceStore:
    """Issue, consume, and purge signing nonces."""

    def __init__(
        self,
        db: AsyncSession,
        ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    async def issue(self, wallet_address: str) -> str:
        """Store a fresh 256-bit hex nonce for the address and return it."""
        nonce = secrets.token_hex(NONCE_BYTES)
        now = self._clock()
        self._db.add(
            AuthNonce(
                wallet_address=wallet_address.lower(),
                nonce=nonce,
                expires_at=now + self._ttl,
                used=False,
                created_at=now,
            )
        )
        await self._db.flush()
        logger.info("nonce_issued", wallet_address=wallet_address.lower())
        return nonce

    async def consume(self, wallet_address: str, nonce: str) -> bool:
        """
        Mark a nonce used if it exists, is unused, and has not expired.

        Returns:
            True if this call consumed the nonce. Unknown, used, or expired
            nonces return False.
        """
        result = await self._db.execute(
            update(AuthNonce)
            .where(AuthNonce.wallet_address == wallet_address.lower())
            .where(AuthNonce.nonce == nonce)
            .where(AuthNonce.used == False)  # noqa: E712
            .where(AuthNonce.expires_at > self._clock())
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def purge_expired(self) -> int:
        """Delete expired nonces. Returns the number of rows removed."""
        result = await self._db.execute(
            delete(AuthNonce)
            .where(AuthNonce.expires_at < self._clock())
            .execution_options(synchronize_session=False)
        )
        count: int = result.rowcount  # type: ignore[attr-defined]
        if count:
            logger.info("nonces_purged", count=count)
        return count
