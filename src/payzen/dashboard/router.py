"""Dashboard endpoints: stats, live balance, chain health."""

from typing import Any

from fastapi import APIRouter, Depends

from payzen.auth.dependencies import get_current_user
from payzen.chain.gateway import ChainGateway
from payzen.config import Settings
from payzen.dashboard.schemas import BalanceResponse, ChainHealthResponse, DashboardStatsResponse
from payzen.dashboard.service import DashboardAggregator
from payzen.db.models import User
from payzen.dependencies import get_app_settings, get_chain, get_dashboard
from payzen.responses import ok

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@router.get("/stats")
async def dashboard_stats(
    user: User = Depends(get_current_user),
    dashboard: DashboardAggregator = Depends(get_dashboard),
) -> dict[str, Any]:
    """Aggregated dashboard statistics for the caller."""
    stats = await dashboard.get_stats(user.wallet_address)
    return ok(DashboardStatsResponse(**stats.to_dict()).model_dump())


@router.get("/balance")
async def balance(
    user: User = Depends(get_current_user),
    chain: ChainGateway = Depends(get_chain),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Live USDC balance ("0" when the chain is unreachable)."""
    amount = await chain.get_balance(user.wallet_address)
    return ok(BalanceResponse(balance=amount, network=settings.network_name).model_dump())


@router.get("/health")
async def chain_health(
    user: User = Depends(get_current_user),
    chain: ChainGateway = Depends(get_chain),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Blockchain RPC connectivity."""
    connected = await chain.is_connected()
    gas_price = await chain.get_gas_price() if connected else "0"
    return ok(
        ChainHealthResponse(
            blockchain_connected=connected,
            network=settings.network_name,
            status="healthy" if connected else "disconnected",
            gas_price_gwei=gas_price,
        ).model_dump()
    )
