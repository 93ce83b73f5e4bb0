"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from payzen.auth.jwt import TokenService
from payzen.auth.router import router as auth_router
from payzen.chain.gateway import ChainGateway
from payzen.config import Settings, get_settings
from payzen.dashboard.router import router as dashboard_router
from payzen.database import close_db, init_db
from payzen.health.router import router as health_router
from payzen.middleware import setup_middleware
from payzen.payments.router import router as payments_router
from payzen.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    if not settings.jwt_secret:
        logger.warning("jwt_secret_missing", detail="token issuance will fail until PAYZEN_JWT_SECRET is set")

    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    logger.info("api_started", environment=settings.environment, chain_id=settings.chain_id)

    yield

    await close_db()
    await close_redis()


def create_app(settings: Settings | None = None, chain: ChainGateway | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration override (defaults to environment settings).
        chain: Chain gateway override (defaults to one built from settings).
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="PayZen API",
        description="USDC payments on Base: wallet sign-in, payment ledger, payment links",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.token_service = TokenService.from_settings(settings)
    app.state.chain = chain or ChainGateway.from_settings(settings)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(payments_router)
    app.include_router(dashboard_router)

    return app


app = create_app()
