"""Initial schema: users, auth nonces, transactions, payment links.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all PayZen tables."""
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("business_type", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("wallet_address", name="uq_users_wallet_address"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    # --- auth_nonces ---
    op.create_table(
        "auth_nonces",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("nonce", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_auth_nonces_wallet_address", "auth_nonces", ["wallet_address"])
    op.create_index("ix_auth_nonces_expires_at", "auth_nonces", ["expires_at"])

    # --- payment_links ---
    op.create_table(
        "payment_links",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(20, 6), nullable=True),
        sa.Column("flexible_amount", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("link_code", sa.String(32), nullable=False),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("link_code", name="uq_payment_links_link_code"),
        sa.CheckConstraint(
            "flexible_amount OR (amount IS NOT NULL AND amount > 0)",
            name="ck_payment_links_amount",
        ),
    )
    op.create_index("ix_payment_links_user_id", "payment_links", ["user_id"])

    # --- transactions ---
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("from_wallet", sa.String(42), nullable=False),
        sa.Column("to_wallet", sa.String(42), nullable=False),
        sa.Column("amount", sa.Numeric(20, 6), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False, server_default="USDC"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column(
            "payment_link_id",
            sa.String(36),
            sa.ForeignKey("payment_links.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_transactions_status",
        ),
    )
    op.create_index("ix_transactions_from_wallet", "transactions", ["from_wallet"])
    op.create_index("ix_transactions_to_wallet", "transactions", ["to_wallet"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])
    op.create_index(
        "ix_transactions_tx_hash",
        "transactions",
        ["tx_hash"],
        unique=True,
        postgresql_where=sa.text("tx_hash IS NOT NULL"),
        sqlite_where=sa.text("tx_hash IS NOT NULL"),
    )

    # --- payment_link_payments ---
    op.create_table(
        "payment_link_payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "payment_link_id",
            sa.String(36),
            sa.ForeignKey("payment_links.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("payer_wallet", sa.String(42), nullable=False),
        sa.Column("amount", sa.Numeric(20, 6), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payment_link_payments_payment_link_id", "payment_link_payments", ["payment_link_id"])


def downgrade() -> None:
    """Drop all PayZen tables."""
    op.drop_table("payment_link_payments")
    op.drop_table("transactions")
    op.drop_table("payment_links")
    op.drop_table("auth_nonces")
    op.drop_table("users")
