from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")


def round2(value) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    """Decimal amount -> integer cents (rounded half-up first)."""
    return int(round2(value) * 100)


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: Optional[int]) -> Optional[str]:
    """Integer cents -> '170.00' for API responses."""
    amount = from_cents(cents)
    return None if amount is None else f"{amount:.2f}"
