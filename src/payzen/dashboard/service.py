"""Dashboard stats aggregation.

Combines the live on-chain balance with completed-transaction totals from the
ledger. Volumes are gross (sent + received) and bucketed by UTC calendar month
of ``created_at``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select

from payzen.db.models import Transaction
from payzen.payments.amounts import format_display

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from payzen.chain.gateway import ChainGateway


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(now: datetime) -> tuple[datetime, datetime, datetime]:
    """Return (previous month start, current month start, next month start) in UTC."""
    now = now.astimezone(timezone.utc)
    current = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    previous = (current - timedelta(days=1)).replace(day=1)
    if current.month == 12:
        following = current.replace(year=current.year + 1, month=1)
    else:
        following = current.replace(month=current.month + 1)
    return previous, current, following


def change_pct(current: Decimal, previous: Decimal) -> float:
    """Month-over-month change in percent; 0 when there is no previous volume."""
    if previous == 0:
        return 0.0
    pct = (current - previous) / previous * 100
    return float(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class DashboardStats:
    total_balance: str
    monthly_volume: str
    monthly_change_pct: float
    received_count: int
    received_amount: str
    sent_count: int
    sent_amount: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DashboardAggregator:
    """Per-account dashboard statistics."""

    def __init__(
        self,
        db: AsyncSession,
        chain: ChainGateway,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._chain = chain
        self._clock = clock

    async def get_stats(self, account: str) -> DashboardStats:
        account = account.lower()
        previous_start, current_start, next_start = month_bounds(self._clock())

        current_volume = await self._volume(account, current_start, next_start)
        previous_volume = await self._volume(account, previous_start, current_start)
        received_count, received_amount = await self._totals(Transaction.to_wallet == account)
        sent_count, sent_amount = await self._totals(Transaction.from_wallet == account)
        balance = await self._chain.get_balance(account)

        return DashboardStats(
            total_balance=balance,
            monthly_volume=format_display(current_volume),
            monthly_change_pct=change_pct(current_volume, previous_volume),
            received_count=received_count,
            received_amount=format_display(received_amount),
            sent_count=sent_count,
            sent_amount=format_display(sent_amount),
        )

    async def _volume(self, account: str, start: datetime, end: datetime) -> Decimal:
        result = await self._db.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.status == "completed")
            .where(or_(Transaction.from_wallet == account, Transaction.to_wallet == account))
            .where(Transaction.created_at >= start)
            .where(Transaction.created_at < end)
        )
        return Decimal(str(result.scalar() or 0))

    async def _totals(self, party_clause: Any) -> tuple[int, Decimal]:  # noqa: ANN401
        result = await self._db.execute(
            select(func.count(Transaction.id), func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.status == "completed")
            .where(party_clause)
        )
        count, total = result.one()
        return int(count or 0), Decimal(str(total or 0))
