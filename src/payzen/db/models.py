"""ORM models matching the schema created by Alembic revision 001_initial_schema.

Account identifiers are stored lower-cased. Monetary amounts are NUMERIC(20, 6),
the smallest USDC unit.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payzen.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


TRANSACTION_STATUSES = ("pending", "completed", "failed")
TERMINAL_STATUSES = frozenset({"completed", "failed"})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Registered wallet owner. Username is stored lower-cased."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    wallet_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    business_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    payment_links: Mapped[list[PaymentLink]] = relationship("PaymentLink", back_populates="owner")


# ---------------------------------------------------------------------------
# Auth: challenge nonces
# ---------------------------------------------------------------------------


class AuthNonce(Base):
    """Single-use signing challenge. Consumed by flipping ``used``."""

    __tablename__ = "auth_nonces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class Transaction(Base):
    """Off-chain payment intent, reconciled against an on-chain transfer."""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_transactions_status",
        ),
        Index(
            "ix_transactions_tx_hash",
            "tx_hash",
            unique=True,
            postgresql_where=text("tx_hash IS NOT NULL"),
            sqlite_where=text("tx_hash IS NOT NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    from_wallet: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    to_wallet: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="USDC", server_default="USDC")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    payment_link_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("payment_links.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PaymentLink(Base):
    """Shareable payment request addressed by ``link_code``."""

    __tablename__ = "payment_links"
    __table_args__ = (
        CheckConstraint(
            "flexible_amount OR (amount IS NOT NULL AND amount > 0)",
            name="ck_payment_links_amount",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(20, 6), nullable=True)
    flexible_amount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    link_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    owner: Mapped[User] = relationship("User", back_populates="payment_links")


class PaymentLinkPayment(Base):
    """Join row linking a completed ledger transaction to the link that produced it."""

    __tablename__ = "payment_link_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    payment_link_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("payment_links.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    payer_wallet: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
