"""Shared FastAPI dependencies.

Process-wide components (settings, token service, chain gateway) are built
once by ``create_app`` and stored on ``app.state``; per-request services are
assembled here around the request's database session.
"""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payzen.auth.jwt import TokenService
from payzen.auth.nonces import NonceStore
from payzen.auth.service import AuthProtocol
from payzen.chain.gateway import ChainGateway
from payzen.config import Settings
from payzen.dashboard.service import DashboardAggregator
from payzen.database import get_session
from payzen.payments.ledger import TransactionLedger
from payzen.payments.links import PaymentLinkRegistry

get_db = get_session


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_chain(request: Request) -> ChainGateway:
    return request.app.state.chain


def get_auth_protocol(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> AuthProtocol:
    return AuthProtocol(db, NonceStore(db, ttl_seconds=settings.nonce_ttl_seconds))


def get_ledger(
    db: AsyncSession = Depends(get_db),
    chain: ChainGateway = Depends(get_chain),
) -> TransactionLedger:
    return TransactionLedger(db, chain)


def get_link_registry(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> PaymentLinkRegistry:
    return PaymentLinkRegistry(db, base_url=settings.payment_link_base_url)


def get_dashboard(
    db: AsyncSession = Depends(get_db),
    chain: ChainGateway = Depends(get_chain),
) -> DashboardAggregator:
    return DashboardAggregator(db, chain)
