"""Tests for the transaction ledger state machine."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payzen.database import get_session_factory
from payzen.db.models import PaymentLink, PaymentLinkPayment, Transaction, User
from payzen.errors import (
    Conflict,
    Forbidden,
    InvalidAddress,
    InvalidProof,
    NotFound,
    TransactionFinalized,
    UpstreamUnavailable,
    ValidationError,
)
from payzen.payments.ledger import TransactionLedger
from payzen.payments.links import PaymentLinkRegistry
from tests.conftest import FakeChainGateway

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
HASH_1 = "0x" + "11" * 32
HASH_2 = "0x" + "22" * 32


@pytest_asyncio.fixture
async def users(db_session: AsyncSession) -> dict[str, User]:
    alice = User(wallet_address=ALICE, full_name="Alice Liddell", username="alice")
    bob = User(wallet_address=BOB, full_name="Bob Builder", username="bob")
    db_session.add_all([alice, bob])
    await db_session.flush()
    return {"alice": alice, "bob": bob}


@pytest.fixture
def ledger(db_session: AsyncSession, chain: FakeChainGateway) -> TransactionLedger:
    return TransactionLedger(db_session, chain)  # type: ignore[arg-type]


class TestResolveRecipient:
    async def test_username(self, ledger: TransactionLedger, users):
        assert await ledger.resolve_recipient("bob") == BOB

    async def test_at_username_any_case(self, ledger: TransactionLedger, users):
        assert await ledger.resolve_recipient("@Bob") == BOB

    async def test_registered_address(self, ledger: TransactionLedger, users):
        assert await ledger.resolve_recipient(BOB.upper().replace("0X", "0x")) == BOB

    async def test_unregistered_address_resolves(self, ledger: TransactionLedger, users):
        assert await ledger.resolve_recipient(CAROL) == CAROL

    async def test_unknown_username(self, ledger: TransactionLedger, users):
        assert await ledger.resolve_recipient("@nobody") is None

    async def test_bare_at(self, ledger: TransactionLedger):
        assert await ledger.resolve_recipient("@") is None


class TestBalanceCheck:
    async def test_sufficient(self, ledger: TransactionLedger, chain: FakeChainGateway):
        chain.set_balance(ALICE, "20")
        await ledger.ensure_sufficient_balance(ALICE, Decimal("20"))

    async def test_insufficient(self, ledger: TransactionLedger, chain: FakeChainGateway):
        chain.set_balance(ALICE, "5.5")
        with pytest.raises(ValidationError, match="Insufficient balance") as exc_info:
            await ledger.ensure_sufficient_balance(ALICE, Decimal("10"))
        assert exc_info.value.data == {"available": "5.5", "required": "10.000000"}

    async def test_skipped_when_chain_unavailable(self, ledger: TransactionLedger, chain: FakeChainGateway):
        chain.available = False
        await ledger.ensure_sufficient_balance(ALICE, Decimal("1000000"))


class TestCreatePending:
    async def test_creates_pending_record(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE.upper().replace("0X", "0x"), BOB, "12.5", note="lunch")
        assert tx.id
        assert tx.status == "pending"
        assert tx.from_wallet == ALICE
        assert tx.to_wallet == BOB
        assert tx.amount == Decimal("12.5")
        assert tx.currency == "USDC"
        assert tx.tx_hash is None
        assert tx.note == "lunch"

    async def test_rejects_zero(self, ledger: TransactionLedger):
        with pytest.raises(ValidationError):
            await ledger.create_pending(ALICE, BOB, "0")

    async def test_rejects_bad_address(self, ledger: TransactionLedger):
        with pytest.raises(InvalidAddress):
            await ledger.create_pending(ALICE, "0xnope", "1")

    async def test_rejects_long_note(self, ledger: TransactionLedger):
        with pytest.raises(ValidationError, match="Note"):
            await ledger.create_pending(ALICE, BOB, "1", note="x" * 501)


class TestAttachProof:
    async def test_completes_with_verified_transfer(self, ledger: TransactionLedger, chain: FakeChainGateway):
        tx = await ledger.create_pending(ALICE, BOB, "10.5")
        chain.confirm(HASH_1, ALICE, BOB, "10.5")

        updated = await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1.upper().replace("0X", "0x"))
        assert updated.status == "completed"
        assert updated.tx_hash == HASH_1

    async def test_failed_without_hash(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        updated = await ledger.attach_proof(tx.id, ALICE, "failed")
        assert updated.status == "failed"
        assert updated.tx_hash is None

    async def test_terminal_records_are_frozen(self, ledger: TransactionLedger, chain: FakeChainGateway):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        await ledger.attach_proof(tx.id, ALICE, "failed")
        chain.confirm(HASH_1, ALICE, BOB, "1")

        with pytest.raises(TransactionFinalized, match="already failed"):
            await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1)

    async def test_unknown_transaction(self, ledger: TransactionLedger):
        with pytest.raises(NotFound):
            await ledger.attach_proof("missing", ALICE, "failed")

    async def test_only_sender_may_update(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        with pytest.raises(Forbidden):
            await ledger.attach_proof(tx.id, BOB, "failed")

    async def test_invalid_status(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        with pytest.raises(ValidationError):
            await ledger.attach_proof(tx.id, ALICE, "pending")

    async def test_completion_requires_hash(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        with pytest.raises(ValidationError, match="tx_hash"):
            await ledger.attach_proof(tx.id, ALICE, "completed")

    async def test_malformed_hash(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        with pytest.raises(ValidationError, match="hash format"):
            await ledger.attach_proof(tx.id, ALICE, "completed", "0x1234")

    async def test_unmined_hash_leaves_pending(self, ledger: TransactionLedger):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        with pytest.raises(InvalidProof):
            await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1)
        assert (await ledger.get(tx.id)).status == "pending"

    async def test_reverted_transfer(self, ledger: TransactionLedger, chain: FakeChainGateway):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        chain.confirm(HASH_1, ALICE, BOB, "1", succeeded=False)
        with pytest.raises(InvalidProof):
            await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1)

    @pytest.mark.parametrize(
        ("sender", "recipient", "amount"),
        [(CAROL, BOB, "1"), (ALICE, CAROL, "1"), (ALICE, BOB, "0.99")],
    )
    async def test_mismatched_transfer(
        self, ledger: TransactionLedger, chain: FakeChainGateway, sender: str, recipient: str, amount: str
    ):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        chain.confirm(HASH_1, sender, recipient, amount)
        with pytest.raises(InvalidProof, match="does not match"):
            await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1)
        assert (await ledger.get(tx.id)).status == "pending"

    async def test_chain_outage_is_retryable(self, ledger: TransactionLedger, chain: FakeChainGateway):
        tx = await ledger.create_pending(ALICE, BOB, "1")
        chain.confirm(HASH_1, ALICE, BOB, "1")
        chain.available = False
        with pytest.raises(UpstreamUnavailable):
            await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1)

        chain.available = True
        updated = await ledger.attach_proof(tx.id, ALICE, "completed", HASH_1)
        assert updated.status == "completed"

    async def test_hash_cannot_prove_two_payments(self, ledger: TransactionLedger, chain: FakeChainGateway):
        first = await ledger.create_pending(ALICE, BOB, "1")
        second = await ledger.create_pending(ALICE, BOB, "1")
        chain.confirm(HASH_1, ALICE, BOB, "1")
        await ledger.attach_proof(first.id, ALICE, "completed", HASH_1)

        with pytest.raises(Conflict, match="already recorded"):
            await ledger.attach_proof(second.id, ALICE, "completed", HASH_1)

    async def test_completed_link_payment_is_recorded(
        self,
        ledger: TransactionLedger,
        chain: FakeChainGateway,
        db_session: AsyncSession,
        users,
    ):
        registry = PaymentLinkRegistry(db_session)
        link = await registry.create(users["bob"].id, title="Coffee", amount="4.5")
        tx = await registry.pay(link.link_code, ALICE, ledger)
        chain.confirm(HASH_2, ALICE, BOB, "4.5")

        await ledger.attach_proof(tx.id, ALICE, "completed", HASH_2)

        await db_session.refresh(link)
        assert link.times_used == 1
        payment = (await db_session.execute(select(PaymentLinkPayment))).scalar_one()
        assert payment.payment_link_id == link.id
        assert payment.transaction_id == tx.id
        assert payment.payer_wallet == ALICE
        assert payment.amount == Decimal("4.5")

    async def test_failed_link_payment_not_counted(
        self, ledger: TransactionLedger, db_session: AsyncSession, users
    ):
        registry = PaymentLinkRegistry(db_session)
        link = await registry.create(users["bob"].id, title="Coffee", amount="4.5")
        tx = await registry.pay(link.link_code, ALICE, ledger)
        await ledger.attach_proof(tx.id, ALICE, "failed")

        await db_session.refresh(link)
        assert link.times_used == 0


class TestReads:
    async def _insert(
        self, db: AsyncSession, sender: str, recipient: str, status: str, minutes_ago: int
    ) -> Transaction:
        created = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
        tx = Transaction(
            from_wallet=sender,
            to_wallet=recipient,
            amount=Decimal("1"),
            status=status,
            created_at=created,
            updated_at=created,
        )
        db.add(tx)
        await db.flush()
        return tx

    async def test_visible_to_parties_only(self, ledger: TransactionLedger, db_session: AsyncSession):
        tx = await self._insert(db_session, ALICE, BOB, "pending", 1)
        assert (await ledger.get_visible(tx.id, ALICE)).id == tx.id
        assert (await ledger.get_visible(tx.id, BOB.upper().replace("0X", "0x"))).id == tx.id
        with pytest.raises(Forbidden, match="view your own"):
            await ledger.get_visible(tx.id, CAROL)
        with pytest.raises(NotFound):
            await ledger.get_visible("missing", ALICE)

    async def test_list_for_account_newest_first(self, ledger: TransactionLedger, db_session: AsyncSession):
        old = await self._insert(db_session, ALICE, BOB, "completed", 30)
        new = await self._insert(db_session, BOB, ALICE, "pending", 5)
        await self._insert(db_session, BOB, CAROL, "completed", 1)

        txs = await ledger.list_for_account(ALICE)
        assert [tx.id for tx in txs] == [new.id, old.id]

    async def test_list_pagination(self, ledger: TransactionLedger, db_session: AsyncSession):
        created = [await self._insert(db_session, ALICE, BOB, "pending", m) for m in (3, 2, 1)]
        page = await ledger.list_for_account(ALICE, limit=2, offset=1)
        assert [tx.id for tx in page] == [created[1].id, created[0].id]

    async def test_sent_and_received_completed_only(self, ledger: TransactionLedger, db_session: AsyncSession):
        sent = await self._insert(db_session, ALICE, BOB, "completed", 10)
        await self._insert(db_session, ALICE, BOB, "pending", 9)
        await self._insert(db_session, ALICE, BOB, "failed", 8)
        received = await self._insert(db_session, BOB, ALICE, "completed", 7)

        assert [tx.id for tx in await ledger.list_sent(ALICE)] == [sent.id]
        assert [tx.id for tx in await ledger.list_received(ALICE)] == [received.id]
        assert [tx.id for tx in await ledger.list_received(BOB)] == [sent.id]


class TestConcurrentProofs:
    """Proofs racing in separate sessions, each committing its own work."""

    async def _pending(self, db: AsyncSession, count: int) -> list[str]:
        ledger = TransactionLedger(db, FakeChainGateway())  # type: ignore[arg-type]
        ids = [(await ledger.create_pending(ALICE, BOB, "1")).id for _ in range(count)]
        await db.commit()
        return ids

    async def _attach(self, chain: FakeChainGateway, transaction_id: str, tx_hash: str) -> str:
        async with get_session_factory()() as session:
            ledger = TransactionLedger(session, chain)  # type: ignore[arg-type]
            tx = await ledger.attach_proof(transaction_id, ALICE, "completed", tx_hash)
            status = tx.status
            await session.commit()
            return status

    async def _completed(self, db: AsyncSession) -> list[tuple[str, str | None]]:
        rows = await db.execute(
            select(Transaction.id, Transaction.tx_hash).where(Transaction.status == "completed")
        )
        return [tuple(row) for row in rows.all()]

    async def test_same_hash_on_two_records(self, db_session: AsyncSession, chain: FakeChainGateway):
        first, second = await self._pending(db_session, 2)
        chain.confirm(HASH_1, ALICE, BOB, "1")
        chain.receipt_delay = 0.1

        outcomes = await asyncio.gather(
            self._attach(chain, first, HASH_1),
            self._attach(chain, second, HASH_1),
            return_exceptions=True,
        )

        assert sorted(type(o).__name__ for o in outcomes) == ["Conflict", "str"]
        conflict = next(o for o in outcomes if isinstance(o, Conflict))
        assert str(conflict) == "Transaction hash already recorded"
        completed = await self._completed(db_session)
        assert len(completed) == 1
        assert completed[0][1] == HASH_1

    async def test_same_record_twice(self, db_session: AsyncSession, chain: FakeChainGateway):
        (tx_id,) = await self._pending(db_session, 1)
        chain.confirm(HASH_1, ALICE, BOB, "1")
        chain.receipt_delay = 0.1

        outcomes = await asyncio.gather(
            self._attach(chain, tx_id, HASH_1),
            self._attach(chain, tx_id, HASH_1),
            return_exceptions=True,
        )

        assert "completed" in outcomes
        assert any(isinstance(o, TransactionFinalized) for o in outcomes)
        assert await self._completed(db_session) == [(tx_id, HASH_1)]

    async def test_storage_rejects_duplicate_hash(self, db_session: AsyncSession):
        for _ in range(2):
            db_session.add(Transaction(from_wallet=ALICE, to_wallet=BOB, amount=Decimal("1"), tx_hash=HASH_2))
        with pytest.raises(IntegrityError):
            await db_session.flush()

