"""Redis pool shared by the rate limiter and the readiness probe.

Redis is optional at request time: callers treat an uninitialized or
unreachable pool as "no rate limiting" rather than as an error.
"""

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 20) -> None:
    """Create the pool. Connections open lazily on first use."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Return the pool. Raises RuntimeError before init_redis()."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


async def ping_redis() -> str:
    """Readiness status string: "ok" or "error: <reason>"."""
    try:
        await get_redis().ping()
    except (RuntimeError, redis.RedisError) as e:
        return f"error: {e}"
    return "ok"
