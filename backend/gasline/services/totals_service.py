# Overview: Pure order totals calculation.

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from gasline.money import round2


def line_total(price, quantity: int) -> Decimal:
    """round2(price * quantity)."""
    return round2(Decimal(str(price)) * int(quantity))


def calculate_totals(items: Iterable) -> dict:
    """
    Compute order totals from line items.

    Each item is a validation.LineItem or any mapping/object exposing a
    price (`variant_price`) and a `quantity`. No tax or shipping is modelled,
    so total_amount always equals subtotal.

    Returns {"subtotal": Decimal, "total_amount": Decimal}.
    """
    subtotal = Decimal("0.00")
    for item in items:
        if isinstance(item, dict):
            price, quantity = item["variant_price"], item["quantity"]
        else:
            price, quantity = item.variant_price, item.quantity
        subtotal += line_total(price, quantity)

    subtotal = round2(subtotal)
    return {"subtotal": subtotal, "total_amount": subtotal}
