"""Typed results for chain gateway calls.

Every ``fetch_*`` gateway call returns one of three shapes:

- the value (found),
- ``None`` (the chain answered, but the thing does not exist),
- ``Unavailable`` (the chain could not be reached in time).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Unavailable:
    """Transport failure marker. Never stored; only returned from the gateway."""

    reason: str


ChainResult = Union[T, Unavailable]  # noqa: UP007


@dataclass(frozen=True)
class TokenBalance:
    raw: int
    decimals: int
    formatted: str


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: tuple[bytes, ...]
    data: bytes


@dataclass(frozen=True)
class ReceiptInfo:
    tx_hash: str
    succeeded: bool
    block_number: int | None
    logs: tuple[LogEntry, ...]


@dataclass(frozen=True)
class TransferEvent:
    """Decoded ERC-20 ``Transfer(address,address,uint256)`` log."""

    from_address: str
    to_address: str
    raw_amount: int
    amount: Decimal


@dataclass(frozen=True)
class TransactionDetail:
    hash: str
    from_address: str
    to_address: str | None
    value: str
    block_number: int | None
    status: str
    timestamp: int | None
