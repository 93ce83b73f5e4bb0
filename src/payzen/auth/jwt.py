"""
HS256 session token management.

Tokens are stateless: validity is the MAC, the expiry, the issuer, and the
``type`` claim. There is no server-side revocation list.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import jwt
import structlog

from payzen.errors import ConfigurationError

if TYPE_CHECKING:
    from payzen.config import Settings
    from payzen.db.models import User

logger = structlog.get_logger()

TOKEN_TYPE = "access"


@dataclass(frozen=True)
class TokenPayload:
    """Decoded session token claims."""

    user_id: str
    wallet_address: str
    issued_at: datetime
    expires_at: datetime


class TokenService:
    """Issue and validate session tokens signed with a shared secret."""

    def __init__(
        self,
        secret: str,
        lifetime: timedelta = timedelta(days=7),
        issuer: str = "payzen",
        algorithm: str = "HS256",
    ) -> None:
        self._secret = secret
        self._lifetime = lifetime
        self._issuer = issuer
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            secret=settings.jwt_secret,
            lifetime=timedelta(days=settings.jwt_expire_days),
            issuer=settings.jwt_issuer,
            algorithm=settings.jwt_algorithm,
        )

    @property
    def lifetime_seconds(self) -> int:
        return int(self._lifetime.total_seconds())

    def _require_secret(self) -> str:
        if not self._secret:
            msg = "JWT secret is not configured"
            raise ConfigurationError(msg)
        return self._secret

    def issue(self, user: User, now: datetime | None = None) -> str:
        """
        Create a session token for a registered user.

        Args:
            user: The authenticated user.
            now: Issue time override (defaults to the current UTC time).

        Returns:
            Encoded JWT string.

        Raises:
            ConfigurationError: If no secret is configured.
        """
        secret = self._require_secret()
        issued_at = now or datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "sub": str(user.id),
            "wallet_address": user.wallet_address,
            "iat": issued_at,
            "exp": issued_at + self._lifetime,
            "iss": self._issuer,
            "type": TOKEN_TYPE,
        }
        return jwt.encode(payload, secret, algorithm=self._algorithm)

    def validate(self, token: str) -> TokenPayload | None:
        """
        Verify and decode a session token.

        Returns:
            The decoded payload, or None if the token is expired, tampered,
            malformed, from another issuer, or not an access token.

        Raises:
            ConfigurationError: If no secret is configured.
        """
        secret = self._require_secret()
        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("token_rejected", reason=str(e))
            return None

        if claims.get("type") != TOKEN_TYPE or not claims.get("wallet_address"):
            return None

        return TokenPayload(
            user_id=str(claims["sub"]),
            wallet_address=str(claims["wallet_address"]).lower(),
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )
