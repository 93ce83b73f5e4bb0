"""USDC amount parsing and formatting."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal

from payzen.errors import ValidationError

AMOUNT_PATTERN = re.compile(r"\d+(\.\d{1,6})?")
USDC_QUANTUM = Decimal("0.000001")
DISPLAY_QUANTUM = Decimal("0.01")


def parse_amount(value: str | Decimal | int, field: str = "amount") -> Decimal:
    """
    Parse a positive decimal amount with at most 6 fractional digits.

    Raises:
        ValidationError: If the value is malformed or not greater than zero.
    """
    text = format(value, "f") if isinstance(value, Decimal) else str(value).strip()
    if not AMOUNT_PATTERN.fullmatch(text):
        msg = "Invalid amount format"
        raise ValidationError(msg, details=[{"field": field, "message": msg}])

    amount = Decimal(text)
    if amount <= 0:
        msg = "Amount must be greater than 0"
        raise ValidationError(msg, details=[{"field": field, "message": msg}])
    return amount


def format_amount(value: Decimal | int | float) -> str:
    """Render a stored amount with the full 6-digit USDC precision."""
    return str(Decimal(str(value)).quantize(USDC_QUANTUM))


def format_display(value: Decimal | int | float) -> str:
    """Render an aggregate rounded to cents ("10.50")."""
    return str(Decimal(str(value)).quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP))
