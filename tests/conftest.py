"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from payzen.chain.results import ReceiptInfo, TokenBalance, TransferEvent, Unavailable
from payzen.config import Settings
from payzen.database import close_db, get_engine, get_session_factory, init_db
from payzen.db import models  # noqa: F401
from payzen.db.base import Base
from payzen.main import create_app

TEST_JWT_SECRET = "test-secret-do-not-use-in-production-0123456789"

# Deterministic test wallets
ALICE_KEY = "0x" + "a1" * 32
BOB_KEY = "0x" + "b2" * 32
CAROL_KEY = "0x" + "c3" * 32


# ---------------------------------------------------------------------------
# Fake chain
# ---------------------------------------------------------------------------


class FakeChainGateway:
    """In-process stand-in for ChainGateway with scripted balances and receipts."""

    def __init__(self) -> None:
        self.available = True
        self.balances: dict[str, str] = {}
        self.receipts: dict[str, ReceiptInfo] = {}
        self.transfers: dict[str, TransferEvent] = {}
        self.receipt_delay = 0.0

    def set_balance(self, address: str, amount: str) -> None:
        self.balances[address.lower()] = amount

    def confirm(
        self,
        tx_hash: str,
        from_address: str,
        to_address: str,
        amount: str,
        succeeded: bool = True,
    ) -> None:
        """Script a mined token transfer for ``tx_hash``."""
        key = tx_hash.lower()
        self.receipts[key] = ReceiptInfo(tx_hash=key, succeeded=succeeded, block_number=1, logs=())
        value = Decimal(amount)
        self.transfers[key] = TransferEvent(
            from_address=from_address.lower(),
            to_address=to_address.lower(),
            raw_amount=int(value * 10**6),
            amount=value,
        )

    async def fetch_balance(self, address: str) -> TokenBalance | Unavailable:
        if not self.available:
            return Unavailable(reason="offline")
        formatted = self.balances.get(address.lower(), "0")
        return TokenBalance(raw=int(Decimal(formatted) * 10**6), decimals=6, formatted=formatted)

    async def fetch_receipt(self, tx_hash: str) -> ReceiptInfo | None | Unavailable:
        if self.receipt_delay:
            await asyncio.sleep(self.receipt_delay)
        if not self.available:
            return Unavailable(reason="offline")
        return self.receipts.get(tx_hash.lower())

    async def fetch_transfer(self, tx_hash: str) -> TransferEvent | None | Unavailable:
        if not self.available:
            return Unavailable(reason="offline")
        return self.transfers.get(tx_hash.lower())

    async def get_balance(self, address: str) -> str:
        balance = await self.fetch_balance(address)
        return "0" if isinstance(balance, Unavailable) else balance.formatted

    async def is_connected(self) -> bool:
        return self.available

    async def get_gas_price(self) -> str:
        return "0.012" if self.available else "0"


# ---------------------------------------------------------------------------
# Wallet helpers
# ---------------------------------------------------------------------------


def sign(account: LocalAccount, message: str) -> str:
    """personal_sign a message the way a browser wallet does."""
    signed = account.sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def signed_challenge(client: AsyncClient, account: LocalAccount) -> dict[str, str]:
    """Fetch a nonce and return a signed login body for it."""
    response = await client.post("/api/v1/auth/nonce", json={"wallet_address": account.address})
    assert response.status_code == 200, response.text
    message = response.json()["data"]["message"]
    return {"wallet_address": account.address, "signature": sign(account, message), "message": message}


async def register_user(
    client: AsyncClient,
    account: LocalAccount,
    username: str,
    full_name: str = "Test User",
) -> str:
    """Register a wallet through the API and return its session token."""
    response = await client.post(
        "/api/v1/auth/register",
        json={"wallet_address": account.address, "full_name": full_name, "username": username},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]["token"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payzen.db'}",
        redis_url="redis://localhost:6379/15",
        jwt_secret=TEST_JWT_SECRET,
        log_format="console",
        payment_link_base_url="https://pay.example.com/pay",
    )


@pytest.fixture
def chain() -> FakeChainGateway:
    return FakeChainGateway()


@pytest.fixture
def alice() -> LocalAccount:
    return Account.from_key(ALICE_KEY)


@pytest.fixture
def bob() -> LocalAccount:
    return Account.from_key(BOB_KEY)


@pytest.fixture
def carol() -> LocalAccount:
    return Account.from_key(CAROL_KEY)


@pytest_asyncio.fixture
async def database(settings: Settings) -> AsyncGenerator[None, None]:
    """Fresh SQLite schema per test."""
    await init_db(settings.database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for service-level tests and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    settings: Settings,
    database: None,
    chain: FakeChainGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the ASGI app, wired to the test database and fake chain."""
    app = create_app(settings, chain=chain)  # type: ignore[arg-type]
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def alice_token(client: AsyncClient, alice: LocalAccount) -> str:
    return await register_user(client, alice, "alice", "Alice Liddell")


@pytest_asyncio.fixture
async def bob_token(client: AsyncClient, bob: LocalAccount) -> str:
    return await register_user(client, bob, "bob", "Bob Builder")


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, alice_token: str) -> AsyncClient:
    """Client authenticated as alice."""
    client.headers["Authorization"] = f"Bearer {alice_token}"
    return client
