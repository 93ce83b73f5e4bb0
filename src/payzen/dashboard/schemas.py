"""Dashboard Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel


class DashboardStatsResponse(BaseModel):
    """Balance, this month's volume, and all-time completed totals."""

    total_balance: str
    monthly_volume: str
    monthly_change_pct: float
    received_count: int
    received_amount: str
    sent_count: int
    sent_amount: str


class BalanceResponse(BaseModel):
    balance: str
    currency: str = "USDC"
    network: str


class ChainHealthResponse(BaseModel):
    blockchain_connected: bool
    network: str
    status: str
    gas_price_gwei: str
