"""Middleware tests: request ID, rate limiting, CORS, error envelope."""

from __future__ import annotations

from typing import Any

import pytest
import redis.asyncio as aioredis
from httpx import ASGITransport, AsyncClient

from payzen.config import Settings
from payzen.errors import UpstreamUnavailable
from payzen.main import create_app
from payzen.middleware import rate_limit
from tests.conftest import FakeChainGateway


class _FakePipeline:
    def __init__(self, store: dict[str, int]) -> None:
        self._store = store
        self._ops: list[str] = []

    def incr(self, key: str) -> None:
        self._ops.append(key)

    def expire(self, key: str, seconds: int) -> None:
        pass

    async def execute(self) -> list[Any]:
        results: list[Any] = []
        for key in self._ops:
            self._store[key] = self._store.get(key, 0) + 1
            results.extend([self._store[key], True])
        return results


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, int] = {}

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self.store)


class BrokenRedis:
    def pipeline(self) -> Any:
        raise aioredis.ConnectionError("connection refused")


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 36


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_rate_limit_passthrough_without_redis(client: AsyncClient) -> None:
    """No Redis means no limiting and no rate limit headers."""
    response = await client.get("/version")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_rate_limit_passthrough_when_redis_down(
    client: AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(rate_limit, "get_redis", lambda: BrokenRedis())
    response = await client.get("/version")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_rate_limit_blocks_excess(
    settings: Settings, database: None, chain: FakeChainGateway, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Requests over the window budget get a 429 envelope with Retry-After."""
    fake = FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
    app = create_app(settings.model_copy(update={"rate_limit_requests": 3}), chain=chain)  # type: ignore[arg-type]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        for remaining in ("2", "1", "0"):
            response = await ac.get("/version")
            assert response.headers["x-ratelimit-remaining"] == remaining
            assert response.headers["x-ratelimit-limit"] == "3"

        response = await ac.get("/version")
        assert response.status_code == 429
        assert response.headers["retry-after"] == "900"
        assert response.json() == {"success": False, "error": "Too many requests, please try again later."}

        assert (await ac.get("/health")).status_code == 200


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight returns access-control-allow-origin for configured origin."""
    response = await client.options(
        "/api/v1/auth/nonce",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.asyncio
async def test_unknown_route_envelope(client: AsyncClient) -> None:
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Route not found"}


@pytest.mark.asyncio
async def test_validation_envelope(client: AsyncClient) -> None:
    response = await client.post("/api/v1/auth/nonce", json={"wallet_address": 42})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "wallet_address"


def _app_with_failing_routes(settings: Settings, chain: FakeChainGateway):
    app = create_app(settings, chain=chain)  # type: ignore[arg-type]

    async def boom() -> None:
        msg = "kaboom"
        raise RuntimeError(msg)

    async def upstream() -> None:
        raise UpstreamUnavailable

    app.add_api_route("/boom", boom)
    app.add_api_route("/upstream", upstream)
    return app


@pytest.mark.asyncio
async def test_unhandled_exception_envelope(settings: Settings, database: None, chain: FakeChainGateway) -> None:
    """Internal errors become a 500 envelope without leaking the message."""
    app = _app_with_failing_routes(settings, chain)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/boom")
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


@pytest.mark.asyncio
async def test_unhandled_exception_debug_message(
    settings: Settings, database: None, chain: FakeChainGateway
) -> None:
    app = _app_with_failing_routes(settings.model_copy(update={"debug": True}), chain)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/boom")
    assert response.json()["message"] == "kaboom"


@pytest.mark.asyncio
async def test_upstream_unavailable_retry_after(settings: Settings, database: None, chain: FakeChainGateway) -> None:
    app = _app_with_failing_routes(settings, chain)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/upstream")
    assert response.status_code == 503
    assert response.headers["retry-after"] == "5"
    assert response.json()["error"] == "Blockchain network unavailable, please retry"


def test_payment_page_origin_allowed(settings: Settings) -> None:
    from payzen.middleware.cors import allowed_origins

    assert allowed_origins(settings) == ["http://localhost:3000", "https://pay.example.com"]


def test_payment_page_origin_not_duplicated(settings: Settings) -> None:
    from payzen.middleware.cors import allowed_origins

    same = settings.model_copy(update={"payment_link_base_url": "http://localhost:3000/pay"})
    assert allowed_origins(same) == ["http://localhost:3000"]


def test_credentials_redacted_from_logs() -> None:
    from payzen.middleware.logging import redact_secrets

    event = redact_secrets(None, "info", {"event": "auth_attempt", "signature": "0xdead", "wallet_address": "0xabc"})
    assert event == {"event": "auth_attempt", "signature": "[redacted]", "wallet_address": "0xabc"}


@pytest.mark.asyncio
async def test_rate_limiter_disabled(
    settings: Settings, database: None, chain: FakeChainGateway, monkeypatch: pytest.MonkeyPatch
) -> None:
    """rate_limit_requests=0 removes the limiter entirely."""
    monkeypatch.setattr(rate_limit, "get_redis", lambda: FakeRedis())
    app = create_app(settings.model_copy(update={"rate_limit_requests": 0}), chain=chain)  # type: ignore[arg-type]
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/version")
    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers
