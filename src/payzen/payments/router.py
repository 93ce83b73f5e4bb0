"""Payments router: transactions and payment links under /api/v1/payments."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payzen.auth.dependencies import get_current_user
from payzen.config import Settings
from payzen.db.models import PaymentLink, Transaction, User
from payzen.dependencies import get_app_settings, get_db, get_ledger, get_link_registry
from payzen.errors import NotFound
from payzen.payments.amounts import parse_amount
from payzen.payments.ledger import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, TransactionLedger
from payzen.payments.links import OwnerSummary, PaymentLinkRegistry
from payzen.payments.schemas import (
    CreatePaymentLinkRequest,
    LinkOwnerResponse,
    PayLinkRequest,
    PaymentLinkResponse,
    SendPaymentRequest,
    TransactionResponse,
    UpdateTransactionRequest,
)
from payzen.responses import ok

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])


def _transaction(tx: Transaction) -> dict[str, Any]:
    return TransactionResponse.model_validate(tx).model_dump(mode="json")


def _transactions(txs: list[Transaction]) -> dict[str, Any]:
    return {"transactions": [_transaction(tx) for tx in txs], "count": len(txs)}


def _link(
    link: PaymentLink,
    registry: PaymentLinkRegistry,
    owner: OwnerSummary | None = None,
) -> dict[str, Any]:
    data = PaymentLinkResponse(
        id=link.id,
        title=link.title,
        description=link.description,
        amount=link.amount,
        flexible_amount=link.flexible_amount,
        link_code=link.link_code,
        link_url=registry.link_url(link.link_code),
        times_used=link.times_used,
        is_active=link.is_active,
        created_at=link.created_at,
        owner=LinkOwnerResponse(**vars(owner)) if owner else None,
    ).model_dump(mode="json")
    if owner is None:
        data.pop("owner")
    return data


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@router.post("/send", status_code=201)
@router.post("/save", status_code=201, include_in_schema=False)
async def send_payment(
    body: SendPaymentRequest,
    user: User = Depends(get_current_user),
    ledger: TransactionLedger = Depends(get_ledger),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Record a pending payment; the client then broadcasts it and attaches the hash."""
    to_wallet = await ledger.resolve_recipient(body.recipient)
    if to_wallet is None:
        msg = "Recipient not found"
        raise NotFound(msg)

    amount = parse_amount(body.amount)
    if settings.enforce_balance_check:
        await ledger.ensure_sufficient_balance(user.wallet_address, amount)

    tx = await ledger.create_pending(user.wallet_address, to_wallet, amount, note=body.note)
    await db.commit()
    return ok(
        {"transaction": _transaction(tx)},
        message="Transaction created. Please sign and submit transaction hash.",
    )


@router.get("/transactions")
async def list_transactions(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    ledger: TransactionLedger = Depends(get_ledger),
) -> dict[str, Any]:
    """Every transaction the caller sent or received, newest first."""
    return ok(_transactions(await ledger.list_for_account(user.wallet_address, limit, offset)))


@router.get("/transactions/sent")
async def list_sent(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    ledger: TransactionLedger = Depends(get_ledger),
) -> dict[str, Any]:
    """Completed transactions sent by the caller."""
    return ok(_transactions(await ledger.list_sent(user.wallet_address, limit)))


@router.get("/transactions/received")
async def list_received(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    ledger: TransactionLedger = Depends(get_ledger),
) -> dict[str, Any]:
    """Completed transactions received by the caller."""
    return ok(_transactions(await ledger.list_received(user.wallet_address, limit)))


@router.get("/transactions/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    ledger: TransactionLedger = Depends(get_ledger),
) -> dict[str, Any]:
    """A single transaction, visible to its sender and recipient only."""
    tx = await ledger.get_visible(transaction_id, user.wallet_address)
    return ok({"transaction": _transaction(tx)})


@router.put("/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    body: UpdateTransactionRequest,
    user: User = Depends(get_current_user),
    ledger: TransactionLedger = Depends(get_ledger),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Attach the on-chain hash and move the transaction to its final status."""
    tx = await ledger.attach_proof(transaction_id, user.wallet_address, body.status, body.tx_hash)
    await db.commit()
    return ok({"transaction": _transaction(tx)}, message="Transaction updated successfully")


# ---------------------------------------------------------------------------
# Payment links
# ---------------------------------------------------------------------------


@router.post("/links", status_code=201)
async def create_link(
    body: CreatePaymentLinkRequest,
    user: User = Depends(get_current_user),
    registry: PaymentLinkRegistry = Depends(get_link_registry),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create a shareable payment link."""
    link = await registry.create(
        user.id,
        title=body.title,
        description=body.description,
        amount=body.amount,
        flexible=body.flexible_amount,
    )
    await db.commit()
    return ok({"payment_link": _link(link, registry)}, message="Payment link created successfully")


@router.get("/links")
async def list_links(
    user: User = Depends(get_current_user),
    registry: PaymentLinkRegistry = Depends(get_link_registry),
) -> dict[str, Any]:
    """The caller's links, newest first, including inactive ones."""
    links = await registry.list_for_owner(user.id)
    return ok({"payment_links": [_link(link, registry) for link in links], "count": len(links)})


@router.get("/links/{link_code}")
async def get_link(
    link_code: str,
    registry: PaymentLinkRegistry = Depends(get_link_registry),
) -> dict[str, Any]:
    """Public lookup of an active link and its owner."""
    found = await registry.get_by_code(link_code)
    if found is None:
        msg = "Payment link not found or inactive"
        raise NotFound(msg)
    link, owner = found
    return ok({"payment_link": _link(link, registry, owner)})


@router.post("/links/{link_code}/pay", status_code=201)
async def pay_link(
    link_code: str,
    body: PayLinkRequest,
    user: User = Depends(get_current_user),
    registry: PaymentLinkRegistry = Depends(get_link_registry),
    ledger: TransactionLedger = Depends(get_ledger),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Create a pending transaction to the link owner."""
    tx = await registry.pay(link_code, user.wallet_address, ledger, amount=body.amount, note=body.note)
    if settings.enforce_balance_check:
        await ledger.ensure_sufficient_balance(user.wallet_address, tx.amount)
    await db.commit()
    return ok(
        {"transaction": _transaction(tx)},
        message="Transaction created. Please sign and submit transaction hash.",
    )


@router.delete("/links/{link_code}")
async def deactivate_link(
    link_code: str,
    user: User = Depends(get_current_user),
    registry: PaymentLinkRegistry = Depends(get_link_registry),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Deactivate one of the caller's links. Unknown or foreign codes are a no-op."""
    await registry.deactivate(link_code, user.id)
    await db.commit()
    return ok(message="Payment link deactivated successfully")
