"""
Payment links.

A link is a shareable, code-addressed request for payment to its owner,
either for a fixed amount or for whatever the payer chooses. Links are never
deleted, only deactivated.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import desc, select, update

from payzen.db.models import PaymentLink, PaymentLinkPayment, User
from payzen.errors import LinkCodeExhausted, NotFound, ValidationError
from payzen.payments.amounts import format_amount, parse_amount

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from payzen.db.models import Transaction
    from payzen.payments.ledger import TransactionLedger

logger = structlog.get_logger()

LINK_CODE_BYTES = 8
MAX_CODE_ATTEMPTS = 5
TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 1000


@dataclass(frozen=True)
class OwnerSummary:
    """Public view of a link owner."""

    wallet_address: str
    username: str
    full_name: str


def _field_error(field: str, msg: str) -> ValidationError:
    return ValidationError(msg, details=[{"field": field, "message": msg}])


class PaymentLinkRegistry:
    """Create, look up, deactivate, and pay through payment links."""

    def __init__(self, db: AsyncSession, base_url: str = "") -> None:
        self._db = db
        self._base_url = base_url.rstrip("/")

    def link_url(self, link_code: str) -> str:
        return f"{self._base_url}/{link_code}"

    async def _unused_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = secrets.token_hex(LINK_CODE_BYTES)
            result = await self._db.execute(select(PaymentLink.id).where(PaymentLink.link_code == code))
            if result.first() is None:
                return code
        logger.error("link_code_exhausted", attempts=MAX_CODE_ATTEMPTS)
        raise LinkCodeExhausted

    async def create(
        self,
        owner_id: str,
        title: str,
        description: str | None = None,
        amount: str | Decimal | None = None,
        flexible: bool = False,
    ) -> PaymentLink:
        """
        Create an active payment link for ``owner_id``.

        Raises:
            ValidationError: Bad title/description, malformed amount, or a
                fixed-amount link without an amount.
        """
        title = title.strip()
        if not 1 <= len(title) <= TITLE_MAX_LENGTH:
            raise _field_error("title", f"Title must be 1-{TITLE_MAX_LENGTH} characters")
        if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
            raise _field_error("description", f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters")

        value = parse_amount(amount) if amount not in (None, "") else None
        if not flexible and value is None:
            raise _field_error("amount", "Amount is required for fixed-amount payment links")

        link = PaymentLink(
            user_id=owner_id,
            title=title,
            description=description or None,
            amount=value,
            flexible_amount=flexible,
            link_code=await self._unused_code(),
            times_used=0,
            is_active=True,
        )
        self._db.add(link)
        await self._db.flush()

        logger.info(
            "payment_link_created",
            link_id=link.id,
            user_id=owner_id,
            link_code=link.link_code,
            flexible=flexible,
        )
        return link

    async def get_by_code(self, link_code: str) -> tuple[PaymentLink, OwnerSummary] | None:
        """Return an active link and its owner, or None for unknown or inactive codes."""
        result = await self._db.execute(
            select(PaymentLink, User)
            .join(User, PaymentLink.user_id == User.id)
            .where(PaymentLink.link_code == link_code)
            .where(PaymentLink.is_active == True)  # noqa: E712
        )
        row = result.first()
        if row is None:
            return None
        link, owner = row
        return link, OwnerSummary(
            wallet_address=owner.wallet_address,
            username=owner.username,
            full_name=owner.full_name,
        )

    async def list_for_owner(self, owner_id: str) -> list[PaymentLink]:
        result = await self._db.execute(
            select(PaymentLink).where(PaymentLink.user_id == owner_id).order_by(desc(PaymentLink.created_at))
        )
        return list(result.scalars().all())

    async def deactivate(self, link_code: str, owner_id: str) -> bool:
        """
        Deactivate a link owned by ``owner_id``.

        Returns:
            True if a link was deactivated. Codes owned by someone else, or
            unknown codes, are a silent no-op.
        """
        result = await self._db.execute(
            update(PaymentLink)
            .where(PaymentLink.link_code == link_code)
            .where(PaymentLink.user_id == owner_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        deactivated = result.rowcount == 1  # type: ignore[attr-defined]
        if deactivated:
            logger.info("payment_link_deactivated", link_code=link_code, user_id=owner_id)
        return deactivated

    async def record_payment(
        self,
        link_id: str,
        transaction_id: str,
        payer: str,
        amount: Decimal,
    ) -> None:
        """Attach a completed transaction to its link and bump ``times_used``."""
        self._db.add(
            PaymentLinkPayment(
                payment_link_id=link_id,
                transaction_id=transaction_id,
                payer_wallet=payer.lower(),
                amount=amount,
            )
        )
        await self._db.execute(
            update(PaymentLink)
            .where(PaymentLink.id == link_id)
            .values(times_used=PaymentLink.times_used + 1)
            .execution_options(synchronize_session=False)
        )
        await self._db.flush()
        logger.info(
            "payment_link_paid",
            link_id=link_id,
            transaction_id=transaction_id,
            amount=format_amount(amount),
        )

    async def pay(
        self,
        link_code: str,
        payer: str,
        ledger: TransactionLedger,
        amount: str | Decimal | None = None,
        note: str | None = None,
    ) -> Transaction:
        """
        Create a pending ledger transaction from ``payer`` to the link owner.

        Fixed-amount links charge their own amount (a supplied amount must
        match it). Flexible links require the payer to supply one.

        Raises:
            NotFound: Unknown or inactive link.
            ValidationError: Missing or mismatched amount.
        """
        found = await self.get_by_code(link_code)
        if found is None:
            msg = "Payment link not found or inactive"
            raise NotFound(msg)
        link, owner = found

        if link.flexible_amount:
            if amount in (None, ""):
                raise _field_error("amount", "Amount is required for flexible payment links")
            value = parse_amount(amount)  # type: ignore[arg-type]
        else:
            value = Decimal(str(link.amount))
            if amount not in (None, "") and parse_amount(amount) != value:  # type: ignore[arg-type]
                raise _field_error("amount", "Amount must match the payment link amount")

        return await ledger.create_pending(
            payer,
            owner.wallet_address,
            value,
            note=note,
            payment_link_id=link.id,
        )
