from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError
from .models.orders import DELIVERY_HOME, DELIVERY_MODES, ORDER_STATUSES


# Maximum unit price: 9,999,999.99
# This prevents database overflow issues and nonsensical prices
MAX_PRICE = Decimal("9999999.99")
MAX_QUANTITY = 1000

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^[0-9]{10,15}$")
OTP_RE = re.compile(r"^[0-9]{6}$")


@dataclass(frozen=True)
class LineItem:
    """One validated checkout line. variant_label None means product-level stock."""
    product_id: int
    product_name: str
    variant_label: str | None
    variant_price: Decimal
    quantity: int


@dataclass(frozen=True)
class CheckoutRequest:
    agency_id: int
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: str
    delivery_mode: str
    payment_method: str
    items: tuple[LineItem, ...]


# =============================================================================
# FIELD COERCION
# =============================================================================

def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """Strict integer: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not re.fullmatch(r"-?\d+", stripped):
            raise ValidationError(f"{field} must be an integer")
        result = int(stripped)
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return result


def coerce_price(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a valid number")
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a valid number")
    if not price.is_finite():
        raise ValidationError(f"{field} must be a valid number")
    if price <= 0:
        raise ValidationError(f"{field} must be positive")
    if price.as_tuple().exponent < -2:
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    if price > MAX_PRICE:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE}")
    return price


def coerce_text(
    value: Any,
    field: str,
    *,
    min_length: int = 1,
    max_length: int | None = None,
    required: bool = True,
) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters")
    return text


def normalize_email(value: Any, field: str = "email") -> str:
    email = coerce_text(value, field, max_length=255)
    email = email.lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email address")
    return email


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


# =============================================================================
# PAYLOAD VALIDATORS
# =============================================================================

def validate_line_item(raw: Any, index: int) -> LineItem:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    prefix = f"items[{index}]"
    if "product_id" not in raw:
        raise ValidationError(f"{prefix}.product_id is required")
    if "quantity" not in raw:
        raise ValidationError(f"{prefix}.quantity is required")

    quantity = coerce_int(raw["quantity"], f"{prefix}.quantity", minimum=1)
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"{prefix}.quantity cannot exceed {MAX_QUANTITY}")

    return LineItem(
        product_id=coerce_int(raw["product_id"], f"{prefix}.product_id", minimum=1),
        product_name=coerce_text(raw.get("product_name"), f"{prefix}.product_name", min_length=2, max_length=200),
        variant_label=coerce_text(raw.get("variant_label"), f"{prefix}.variant_label", max_length=50, required=False),
        variant_price=coerce_price(raw.get("variant_price"), f"{prefix}.variant_price"),
        quantity=quantity,
    )


def validate_checkout_payload(payload: Any) -> CheckoutRequest:
    """
    Validate a checkout body and return an immutable CheckoutRequest.

    Client-supplied line totals are ignored; totals are always derived
    server-side from price and quantity. Every line must belong to the
    order's agency: an item may repeat agency_id, but it must match.
    """
    data = require_json_object(payload)

    if "agency_id" not in data:
        raise ValidationError("agency_id is required")
    agency_id = coerce_int(data["agency_id"], "agency_id", minimum=1)

    phone = coerce_text(data.get("customer_phone"), "customer_phone")
    if not PHONE_RE.match(phone):
        raise ValidationError("Phone number must be 10-15 digits")

    delivery_mode = data.get("delivery_mode") or DELIVERY_HOME
    if delivery_mode not in DELIVERY_MODES:
        raise ValidationError(f"delivery_mode must be one of: {', '.join(DELIVERY_MODES)}")

    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        raise ValidationError("items must be an array")
    if not raw_items:
        raise ValidationError("At least one item is required")

    for index, raw in enumerate(raw_items):
        if isinstance(raw, dict) and raw.get("agency_id") is not None:
            if coerce_int(raw["agency_id"], f"items[{index}].agency_id") != agency_id:
                raise ValidationError("All items must belong to the same agency")

    items = tuple(validate_line_item(raw, i) for i, raw in enumerate(raw_items))

    return CheckoutRequest(
        agency_id=agency_id,
        customer_name=coerce_text(data.get("customer_name"), "customer_name", min_length=2, max_length=100),
        customer_email=normalize_email(data.get("customer_email"), "customer_email"),
        customer_phone=phone,
        customer_address=coerce_text(data.get("customer_address"), "customer_address", min_length=10, max_length=500),
        delivery_mode=delivery_mode,
        payment_method=coerce_text(data.get("payment_method"), "payment_method", max_length=32, required=False)
        or "cash_on_delivery",
        items=items,
    )


def validate_status_value(value: Any) -> str:
    if value not in ORDER_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    return value


def validate_otp_code(value: Any) -> str:
    if not isinstance(value, str) or not OTP_RE.match(value.strip()):
        raise ValidationError("OTP must be 6 digits")
    return value.strip()


def validate_optional_bool(value: Any, field: str) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be a boolean")
