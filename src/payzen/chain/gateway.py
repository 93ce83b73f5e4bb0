"""Read-only Base RPC adapter for the USDC token.

Resilience boundary: provider errors and timeouts are caught here and turned
into ``Unavailable``. Callers that must tell "empty" from "unreachable" use the
``fetch_*`` methods; display paths use the convenience methods, which apply
the benign defaults (``"0"`` / ``None`` / ``False``).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from eth_utils import keccak
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound

from payzen.auth.address_validation import is_valid_address
from payzen.chain.results import (
    ChainResult,
    LogEntry,
    ReceiptInfo,
    TokenBalance,
    TransactionDetail,
    TransferEvent,
    Unavailable,
)

if TYPE_CHECKING:
    from payzen.config import Settings

logger = structlog.get_logger()

T = TypeVar("T")

ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

TRANSFER_TOPIC = keccak(text="Transfer(address,address,uint256)")


def format_units(value: int, decimals: int) -> str:
    """Scale an integer token amount to a plain decimal string ("10.5", "0")."""
    return format(Decimal(value).scaleb(-decimals).normalize(), "f")


def _to_bytes(value: Any) -> bytes:  # noqa: ANN401
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(str(value).removeprefix("0x"))


def _to_hex(value: Any) -> str:  # noqa: ANN401
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value).lower()


def _topic_address(topic: bytes) -> str:
    return "0x" + topic[-20:].hex()


class ChainGateway:
    """Balance queries, receipt lookups, and Transfer decoding for one token."""

    def __init__(
        self,
        w3: AsyncWeb3,
        token_address: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._w3 = w3
        self._token_address = token_address.lower()
        self._token = w3.eth.contract(address=AsyncWeb3.to_checksum_address(token_address), abi=ERC20_ABI)
        self._timeout = timeout_seconds
        self._decimals: int | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ChainGateway:
        w3 = AsyncWeb3(AsyncHTTPProvider(settings.rpc_url))
        return cls(w3, settings.usdc_contract_address, settings.chain_rpc_timeout_seconds)

    @staticmethod
    def is_valid_address(address: str) -> bool:
        return is_valid_address(address)

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> ChainResult[T]:
        """Await an RPC call under the timeout, converting transport failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except TransactionNotFound:
            raise
        except Exception as e:
            logger.warning("chain_call_failed", operation=operation, error=repr(e))
            return Unavailable(reason=f"{operation}: {e!r}")

    # ------------------------------------------------------------------
    # Tagged fetches
    # ------------------------------------------------------------------

    async def fetch_decimals(self) -> ChainResult[int]:
        if self._decimals is not None:
            return self._decimals
        result = await self._call("decimals", self._token.functions.decimals().call())
        if isinstance(result, Unavailable):
            return result
        self._decimals = int(result)
        return self._decimals

    async def fetch_balance(self, address: str) -> ChainResult[TokenBalance]:
        if not is_valid_address(address):
            return Unavailable(reason="invalid address")
        checksummed = AsyncWeb3.to_checksum_address(address.lower())
        raw = await self._call("balanceOf", self._token.functions.balanceOf(checksummed).call())
        if isinstance(raw, Unavailable):
            return raw
        decimals = await self.fetch_decimals()
        if isinstance(decimals, Unavailable):
            return decimals
        return TokenBalance(raw=int(raw), decimals=decimals, formatted=format_units(int(raw), decimals))

    async def fetch_receipt(self, tx_hash: str) -> ChainResult[ReceiptInfo | None]:
        try:
            receipt = await self._call("get_transaction_receipt", self._w3.eth.get_transaction_receipt(tx_hash))
        except TransactionNotFound:
            return None
        if isinstance(receipt, Unavailable) or receipt is None:
            return receipt
        return _parse_receipt(tx_hash, receipt)

    async def fetch_transfer(self, tx_hash: str) -> ChainResult[TransferEvent | None]:
        receipt = await self.fetch_receipt(tx_hash)
        if isinstance(receipt, Unavailable) or receipt is None:
            return receipt

        log = next(
            (
                entry
                for entry in receipt.logs
                if entry.address == self._token_address
                and len(entry.topics) >= 3
                and entry.topics[0] == TRANSFER_TOPIC
            ),
            None,
        )
        if log is None:
            return None

        decimals = await self.fetch_decimals()
        if isinstance(decimals, Unavailable):
            return decimals

        raw_amount = int.from_bytes(log.data[:32], "big")
        return TransferEvent(
            from_address=_topic_address(log.topics[1]),
            to_address=_topic_address(log.topics[2]),
            raw_amount=raw_amount,
            amount=Decimal(raw_amount).scaleb(-decimals),
        )

    async def fetch_transaction_detail(self, tx_hash: str) -> ChainResult[TransactionDetail | None]:
        try:
            tx = await self._call("get_transaction", self._w3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            return None
        if isinstance(tx, Unavailable) or tx is None:
            return tx

        receipt = await self.fetch_receipt(tx_hash)
        if isinstance(receipt, Unavailable):
            return receipt

        block_number = tx.get("blockNumber")
        timestamp: int | None = None
        if block_number is not None:
            block = await self._call("get_block", self._w3.eth.get_block(block_number))
            if not isinstance(block, Unavailable) and block is not None:
                timestamp = int(block["timestamp"])

        status = "success" if receipt is not None and receipt.succeeded else "failed"
        to_address = tx.get("to")
        return TransactionDetail(
            hash=_to_hex(tx.get("hash", tx_hash)),
            from_address=str(tx["from"]).lower(),
            to_address=str(to_address).lower() if to_address else None,
            value=format_units(int(tx.get("value") or 0), 18),
            block_number=block_number,
            status=status,
            timestamp=timestamp,
        )

    async def fetch_block_number(self) -> ChainResult[int]:
        return await self._call("block_number", self._w3.eth.block_number)

    # ------------------------------------------------------------------
    # Benign-default convenience methods (display paths)
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> str:
        """Human-scaled token balance; "0" when the chain is unreachable."""
        balance = await self.fetch_balance(address)
        if isinstance(balance, Unavailable):
            return "0"
        return balance.formatted

    async def verify_transaction_success(self, tx_hash: str) -> bool:
        receipt = await self.fetch_receipt(tx_hash)
        return isinstance(receipt, ReceiptInfo) and receipt.succeeded

    async def decode_transfer_event(self, tx_hash: str) -> TransferEvent | None:
        transfer = await self.fetch_transfer(tx_hash)
        return transfer if isinstance(transfer, TransferEvent) else None

    async def get_transaction_detail(self, tx_hash: str) -> TransactionDetail | None:
        detail = await self.fetch_transaction_detail(tx_hash)
        return detail if isinstance(detail, TransactionDetail) else None

    async def is_connected(self) -> bool:
        return not isinstance(await self.fetch_block_number(), Unavailable)

    async def get_gas_price(self) -> str:
        """Current gas price in gwei; "0" when unreachable."""
        price = await self._call("gas_price", self._w3.eth.gas_price)
        if isinstance(price, Unavailable):
            return "0"
        return format_units(int(price), 9)


def _parse_receipt(tx_hash: str, receipt: Mapping[str, Any]) -> ReceiptInfo:
    logs = tuple(
        LogEntry(
            address=str(log["address"]).lower(),
            topics=tuple(_to_bytes(t) for t in log.get("topics", ())),
            data=_to_bytes(log.get("data", b"")),
        )
        for log in receipt.get("logs", ())
    )
    return ReceiptInfo(
        tx_hash=tx_hash.lower(),
        succeeded=receipt.get("status") == 1,
        block_number=receipt.get("blockNumber"),
        logs=logs,
    )
