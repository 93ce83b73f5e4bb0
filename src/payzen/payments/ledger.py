"""
Transaction ledger.

Payment records start ``pending`` when the sender declares intent and move
once, to ``completed`` or ``failed``, when the sender attaches the on-chain
proof. Terminal records never change again.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import desc, or_, select, update
from sqlalchemy.exc import IntegrityError

from payzen.auth.address_validation import is_valid_address, normalize_address, same_address
from payzen.auth.service import get_user_by_username
from payzen.chain.results import Unavailable
from payzen.db.models import TERMINAL_STATUSES, Transaction
from payzen.errors import (
    Conflict,
    Forbidden,
    InvalidProof,
    NotFound,
    TransactionFinalized,
    UpstreamUnavailable,
    ValidationError,
)
from payzen.payments.amounts import format_amount, parse_amount
from payzen.payments.links import PaymentLinkRegistry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from payzen.chain.gateway import ChainGateway

logger = structlog.get_logger()

TX_HASH_PATTERN = re.compile(r"0x[0-9a-fA-F]{64}")
NOTE_MAX_LENGTH = 500
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_PAGE_SIZE))


class TransactionLedger:
    """Create, reconcile, and list payment records."""

    def __init__(self, db: AsyncSession, chain: ChainGateway) -> None:
        self._db = db
        self._chain = chain

    # ------------------------------------------------------------------
    # Recipients and balances
    # ------------------------------------------------------------------

    async def resolve_recipient(self, identifier: str) -> str | None:
        """
        Resolve an address or ``@username`` to a lower-cased account.

        A syntactically valid address resolves to itself whether or not it is
        registered. Usernames resolve only when a user holds them.
        """
        identifier = identifier.strip()
        if is_valid_address(identifier):
            return identifier.lower()

        username = identifier.removeprefix("@")
        if not username:
            return None
        user = await get_user_by_username(self._db, username)
        return user.wallet_address if user else None

    async def ensure_sufficient_balance(self, account: str, amount: Decimal) -> None:
        """
        Reject a send the sender's live balance cannot cover.

        An unreachable chain skips the check; the ledger only records intent.

        Raises:
            ValidationError: "Insufficient balance", with available/required.
        """
        balance = await self._chain.fetch_balance(account)
        if isinstance(balance, Unavailable):
            logger.warning("balance_check_skipped", wallet_address=account, reason=balance.reason)
            return

        if Decimal(balance.formatted) < amount:
            msg = "Insufficient balance"
            raise ValidationError(
                msg,
                data={"available": balance.formatted, "required": format_amount(amount)},
            )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def create_pending(
        self,
        from_wallet: str,
        to_wallet: str,
        amount: str | Decimal,
        note: str | None = None,
        payment_link_id: str | None = None,
    ) -> Transaction:
        """
        Record a payment intent.

        Raises:
            InvalidAddress: If either party is not a valid address.
            ValidationError: If the amount or note is invalid.
        """
        sender = normalize_address(from_wallet)
        recipient = normalize_address(to_wallet)
        value = parse_amount(amount)
        if note is not None and len(note) > NOTE_MAX_LENGTH:
            msg = f"Note must be at most {NOTE_MAX_LENGTH} characters"
            raise ValidationError(msg, details=[{"field": "note", "message": msg}])

        now = datetime.now(timezone.utc)
        tx = Transaction(
            from_wallet=sender,
            to_wallet=recipient,
            amount=value,
            currency="USDC",
            status="pending",
            note=note or None,
            payment_link_id=payment_link_id,
            created_at=now,
            updated_at=now,
        )
        self._db.add(tx)
        await self._db.flush()

        logger.info(
            "transaction_created",
            transaction_id=tx.id,
            from_wallet=sender,
            to_wallet=recipient,
            amount=format_amount(value),
            payment_link_id=payment_link_id,
        )
        return tx

    async def attach_proof(
        self,
        transaction_id: str,
        requester: str,
        status: str,
        tx_hash: str | None = None,
    ) -> Transaction:
        """
        Move a pending transaction to a terminal status.

        Args:
            transaction_id: Ledger record ID.
            requester: Authenticated caller; must be the sender.
            status: ``completed`` or ``failed``.
            tx_hash: On-chain transaction hash. Required for ``completed``.

        Returns:
            The updated transaction.

        Raises:
            NotFound: Unknown transaction.
            Forbidden: The requester is not the sender.
            TransactionFinalized: The record is already terminal.
            Conflict: The hash already proves another payment.
            ValidationError: Bad status, or completion without a hash.
            InvalidProof: The hash does not verify; the record stays pending.
            UpstreamUnavailable: The chain could not be reached.
        """
        tx = await self.get(transaction_id)
        if tx is None:
            msg = "Transaction not found"
            raise NotFound(msg)
        if not same_address(requester, tx.from_wallet):
            msg = "Forbidden: You can only update your own transactions"
            raise Forbidden(msg)
        if tx.status in TERMINAL_STATUSES:
            raise TransactionFinalized(tx.status)

        if status not in TERMINAL_STATUSES:
            msg = "Status must be one of: completed, failed"
            raise ValidationError(msg, details=[{"field": "status", "message": msg}])
        if status == "completed" and not tx_hash:
            msg = "tx_hash is required to complete a transaction"
            raise ValidationError(msg, details=[{"field": "tx_hash", "message": msg}])

        if tx_hash:
            if not TX_HASH_PATTERN.fullmatch(tx_hash):
                msg = "Invalid transaction hash format"
                raise ValidationError(msg, details=[{"field": "tx_hash", "message": msg}])
            tx_hash = tx_hash.lower()
            await self._ensure_hash_unclaimed(tx.id, tx_hash)
            await self._verify_proof(tx, tx_hash)

        try:
            result = await self._db.execute(
                update(Transaction)
                .where(Transaction.id == tx.id)
                .where(Transaction.status == "pending")
                .values(status=status, tx_hash=tx_hash, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            # A concurrent proof claimed the same hash first
            await self._db.rollback()
            logger.info("proof_rejected", transaction_id=transaction_id, tx_hash=tx_hash, reason="hash_claimed")
            msg = "Transaction hash already recorded"
            raise Conflict(msg) from None
        await self._db.refresh(tx)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise TransactionFinalized(tx.status)

        if tx.status == "completed" and tx.payment_link_id:
            await PaymentLinkRegistry(self._db).record_payment(
                tx.payment_link_id, tx.id, tx.from_wallet, tx.amount
            )

        logger.info("transaction_finalized", transaction_id=tx.id, status=tx.status, tx_hash=tx_hash)
        return tx

    async def _ensure_hash_unclaimed(self, transaction_id: str, tx_hash: str) -> None:
        result = await self._db.execute(
            select(Transaction.id)
            .where(Transaction.tx_hash == tx_hash)
            .where(Transaction.id != transaction_id)
            .limit(1)
        )
        if result.first() is not None:
            msg = "Transaction hash already recorded"
            raise Conflict(msg)

    async def _verify_proof(self, tx: Transaction, tx_hash: str) -> None:
        receipt = await self._chain.fetch_receipt(tx_hash)
        if isinstance(receipt, Unavailable):
            raise UpstreamUnavailable
        if receipt is None or not receipt.succeeded:
            logger.info("proof_rejected", transaction_id=tx.id, tx_hash=tx_hash, reason="receipt")
            raise InvalidProof

        transfer = await self._chain.fetch_transfer(tx_hash)
        if isinstance(transfer, Unavailable):
            raise UpstreamUnavailable
        if (
            transfer is None
            or not same_address(transfer.from_address, tx.from_wallet)
            or not same_address(transfer.to_address, tx.to_wallet)
            or transfer.amount != Decimal(str(tx.amount))
        ):
            logger.info("proof_rejected", transaction_id=tx.id, tx_hash=tx_hash, reason="transfer_mismatch")
            msg = "Transaction hash does not match this payment"
            raise InvalidProof(msg)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, transaction_id: str) -> Transaction | None:
        result = await self._db.execute(select(Transaction).where(Transaction.id == transaction_id))
        return result.scalar_one_or_none()

    async def get_visible(self, transaction_id: str, requester: str) -> Transaction:
        """
        Fetch a transaction the requester is a party to.

        Raises:
            NotFound: Unknown transaction.
            Forbidden: The requester is neither sender nor recipient.
        """
        tx = await self.get(transaction_id)
        if tx is None:
            msg = "Transaction not found"
            raise NotFound(msg)
        if not (same_address(requester, tx.from_wallet) or same_address(requester, tx.to_wallet)):
            msg = "Forbidden: You can only view your own transactions"
            raise Forbidden(msg)
        return tx

    async def list_for_account(
        self,
        account: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Transaction]:
        """All transactions the account sent or received, newest first."""
        account = account.lower()
        result = await self._db.execute(
            select(Transaction)
            .where(or_(Transaction.from_wallet == account, Transaction.to_wallet == account))
            .order_by(desc(Transaction.created_at))
            .limit(_clamp_limit(limit))
            .offset(max(offset, 0))
        )
        return list(result.scalars().all())

    async def list_sent(self, account: str, limit: int = DEFAULT_PAGE_SIZE) -> list[Transaction]:
        """Completed transactions sent by the account, newest first."""
        result = await self._db.execute(
            select(Transaction)
            .where(Transaction.from_wallet == account.lower())
            .where(Transaction.status == "completed")
            .order_by(desc(Transaction.created_at))
            .limit(_clamp_limit(limit))
        )
        return list(result.scalars().all())

    async def list_received(self, account: str, limit: int = DEFAULT_PAGE_SIZE) -> list[Transaction]:
        """Completed transactions received by the account, newest first."""
        result = await self._db.execute(
            select(Transaction)
            .where(Transaction.to_wallet == account.lower())
            .where(Transaction.status == "completed")
            .order_by(desc(Transaction.created_at))
            .limit(_clamp_limit(limit))
        )
        return list(result.scalars().all())
