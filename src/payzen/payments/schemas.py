"""Request/response schemas for payment endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from payzen.payments.amounts import format_amount

AMOUNT_FIELD_PATTERN = r"^\d+(\.\d{1,6})?$"
TX_HASH_FIELD_PATTERN = r"^0x[a-fA-F0-9]{64}$"


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class SendPaymentRequest(BaseModel):
    """Declare a payment to an address or @username."""

    model_config = ConfigDict(str_strip_whitespace=True)

    recipient: str = Field(..., min_length=1)
    amount: str = Field(..., pattern=AMOUNT_FIELD_PATTERN)
    note: str | None = Field(None, max_length=500)


class UpdateTransactionRequest(BaseModel):
    """Attach the on-chain proof and finalize."""

    tx_hash: str | None = Field(None, pattern=TX_HASH_FIELD_PATTERN)
    status: Literal["completed", "failed"]


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    from_wallet: str
    to_wallet: str
    amount: Decimal
    currency: str
    status: str
    tx_hash: str | None = None
    note: str | None = None
    payment_link_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_serializer("amount")
    def _serialize_amount(self, amount: Decimal) -> str:
        return format_amount(amount)


# ---------------------------------------------------------------------------
# Payment links
# ---------------------------------------------------------------------------


class CreatePaymentLinkRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=1000)
    amount: str | None = Field(None, pattern=AMOUNT_FIELD_PATTERN)
    flexible_amount: bool


class PayLinkRequest(BaseModel):
    """Pay through a link. ``amount`` is required for flexible links only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    amount: str | None = Field(None, pattern=AMOUNT_FIELD_PATTERN)
    note: str | None = Field(None, max_length=500)


class LinkOwnerResponse(BaseModel):
    wallet_address: str
    username: str
    full_name: str


class PaymentLinkResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    amount: Decimal | None = None
    flexible_amount: bool
    link_code: str
    link_url: str | None = None
    times_used: int
    is_active: bool
    created_at: datetime
    owner: LinkOwnerResponse | None = None

    @field_serializer("amount")
    def _serialize_amount(self, amount: Decimal | None) -> str | None:
        return format_amount(amount) if amount is not None else None
