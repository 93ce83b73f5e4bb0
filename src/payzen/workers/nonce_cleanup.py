"""arq worker that purges expired authentication nonces.

Run with: arq payzen.workers.nonce_cleanup.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from payzen.auth.nonces import NonceStore
from payzen.config import get_settings
from payzen.database import close_db, get_session_factory, init_db

logger = logging.getLogger(__name__)


def purge_minutes(interval_minutes: int) -> set[int]:
    """Minutes of the hour at which the purge runs."""
    interval = max(1, min(interval_minutes, 60))
    return set(range(0, 60, interval))


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the DB engine on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    logger.info("Nonce cleanup worker started (every %d min)", settings.nonce_purge_interval_minutes)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Dispose of the DB engine on worker shutdown."""
    await close_db()
    logger.info("Nonce cleanup worker shut down")


async def purge_expired_nonces(ctx: dict) -> int:  # type: ignore[type-arg]
    """Delete every nonce past its expiry. Safe to run concurrently with logins."""
    async with get_session_factory()() as session:
        count = await NonceStore(session).purge_expired()
        await session.commit()
    if count:
        logger.info("Purged %d expired nonces", count)
    return count


_settings = get_settings()


class WorkerSettings:
    """arq worker settings for the nonce purge."""

    functions = [purge_expired_nonces]
    cron_jobs = [
        cron(
            purge_expired_nonces,
            minute=purge_minutes(_settings.nonce_purge_interval_minutes),
            run_at_startup=True,
            unique=True,
        ),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 1
    job_timeout = 60
