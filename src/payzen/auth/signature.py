"""
Wallet message signature verification.

Browser wallets sign challenges with ``personal_sign`` (EIP-191 version 0x45):
keccak256("\\x19Ethereum Signed Message:\\n" || len(message) || message).
The signer is recovered from the 65-byte (r, s, v) signature with eth-account.
"""

from __future__ import annotations

import re

from eth_account import Account
from eth_account.messages import encode_defunct

from payzen.auth.address_validation import is_valid_address

SIGNATURE_PATTERN = re.compile(r"(0x)?[0-9a-fA-F]{130}")


class InvalidSignatureFormat(ValueError):
    """Signature is not a decodable 65-byte secp256k1 signature."""


def recover_signer(message: str, signature: str) -> str:
    """
    Recover the signing account from a personal-sign message.

    Args:
        message: The exact message text that was signed.
        signature: Hex-encoded 65-byte signature (``0x`` prefix optional).

    Returns:
        The signer address, lower-cased.

    Raises:
        InvalidSignatureFormat: If the signature cannot be decoded or recovered.
    """
    if not isinstance(signature, str) or not SIGNATURE_PATTERN.fullmatch(signature):
        msg = "Signature must be 65 bytes of hex"
        raise InvalidSignatureFormat(msg)

    try:
        signer = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        msg = f"Unrecoverable signature: {e}"
        raise InvalidSignatureFormat(msg) from e
    return signer.lower()


def verify_signature(message: str, signature: str, expected_address: str) -> bool:
    """
    Check that ``signature`` over ``message`` was produced by ``expected_address``.

    Returns:
        True if the recovered signer matches (case-insensitive). Malformed
        signatures and addresses yield False.
    """
    if not is_valid_address(expected_address):
        return False
    try:
        recovered = recover_signer(message, signature)
    except InvalidSignatureFormat:
        return False
    return recovered == expected_address.lower()
