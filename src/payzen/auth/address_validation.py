"""
EVM account address validation.

An address is ``0x`` followed by 40 hex characters (20 bytes). All-lowercase
and all-uppercase forms carry no checksum and are accepted as-is; mixed-case
input must satisfy the EIP-55 checksum.
"""

from __future__ import annotations

import re

from eth_utils import is_checksum_address

from payzen.errors import InvalidAddress

ADDRESS_PATTERN = re.compile(r"0x[0-9a-fA-F]{40}")


def is_valid_address(address: object) -> bool:
    """
    Validate an account address.

    Args:
        address: Candidate address string.

    Returns:
        True if the address is well-formed (and checksummed when mixed-case).
    """
    if not isinstance(address, str) or not ADDRESS_PATTERN.fullmatch(address):
        return False

    body = address[2:]
    if body == body.lower() or body == body.upper():
        return True
    return is_checksum_address(address)


def normalize_address(address: str) -> str:
    """
    Return the canonical (lower-cased) storage form of an address.

    Raises:
        InvalidAddress: If the address is malformed.
    """
    if not is_valid_address(address):
        raise InvalidAddress
    return address.lower()


def same_address(a: str, b: str) -> bool:
    """Case-insensitive address equality."""
    return a.lower() == b.lower()
