# Overview: Pytest coverage for order totals and checkout validation.

from decimal import Decimal

import pytest

from gasline.errors import ValidationError
from gasline.money import format_cents, round2, to_cents
from gasline.services.totals_service import calculate_totals, line_total
from gasline.validation import (
    LineItem,
    coerce_int,
    validate_checkout_payload,
    validate_otp_code,
)
from conftest import checkout_payload


def _item(price, qty, label="14.2kg"):
    return LineItem(product_id=1, product_name="LPG Cylinder", variant_label=label,
                    variant_price=Decimal(price), quantity=qty)


class TestTotals:

    def test_two_cylinders_at_85(self):
        totals = calculate_totals([_item("85.00", 2)])
        assert totals == {"subtotal": Decimal("170.00"), "total_amount": Decimal("170.00")}

    def test_subtotal_is_sum_of_rounded_lines(self):
        items = [_item("10.005", 1), _item("0.335", 3, label="5kg")]
        # 10.005 -> 10.01, 1.005 -> 1.01
        assert calculate_totals(items)["subtotal"] == Decimal("11.02")

    def test_line_total_rounds_half_up(self):
        assert line_total(Decimal("0.125"), 1) == Decimal("0.13")
        assert line_total("33.33", 3) == Decimal("99.99")

    def test_accepts_mappings(self):
        totals = calculate_totals([{"variant_price": "40.00", "quantity": 3}])
        assert totals["total_amount"] == Decimal("120.00")

    def test_total_equals_subtotal(self):
        totals = calculate_totals([_item("85.00", 2), _item("40.00", 1, label="5kg")])
        assert totals["total_amount"] == totals["subtotal"] == Decimal("210.00")

    def test_cents_helpers(self):
        assert to_cents(Decimal("170.00")) == 17000
        assert to_cents("0.005") == 1
        assert format_cents(17000) == "170.00"
        assert format_cents(None) is None
        assert round2("2.675") == Decimal("2.68")


class TestCheckoutValidation:

    def test_valid_payload_is_normalized(self):
        req = validate_checkout_payload(checkout_payload(1, 5))
        assert req.agency_id == 1
        assert req.customer_email == "priya@example.com"
        assert req.delivery_mode == "home_delivery"
        assert req.items[0].variant_price == Decimal("85.00")
        assert req.items[0].quantity == 2

    def test_defaults_for_mode_and_payment(self):
        payload = checkout_payload(1, 5)
        del payload["delivery_mode"]
        del payload["payment_method"]
        req = validate_checkout_payload(payload)
        assert req.delivery_mode == "home_delivery"
        assert req.payment_method == "cash_on_delivery"

    def test_client_line_total_is_ignored(self):
        payload = checkout_payload(1, 5)
        payload["items"][0]["line_total"] = "1.00"
        payload["total_amount"] = "1.00"
        req = validate_checkout_payload(payload)
        assert calculate_totals(req.items)["total_amount"] == Decimal("170.00")

    @pytest.mark.parametrize("field, value", [
        ("customer_name", "P"),
        ("customer_email", "not-an-email"),
        ("customer_phone", "12345"),
        ("customer_phone", "98765abc10"),
        ("customer_address", "short"),
        ("delivery_mode", "drone"),
        ("items", []),
        ("items", "cylinder"),
    ])
    def test_rejects_bad_fields(self, field, value):
        with pytest.raises(ValidationError):
            validate_checkout_payload(checkout_payload(1, 5, **{field: value}))

    def test_requires_agency(self):
        payload = checkout_payload(1, 5)
        del payload["agency_id"]
        with pytest.raises(ValidationError, match="agency_id is required"):
            validate_checkout_payload(payload)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2.0", None])
    def test_rejects_bad_quantity(self, quantity):
        payload = checkout_payload(1, 5)
        payload["items"][0]["quantity"] = quantity
        with pytest.raises(ValidationError):
            validate_checkout_payload(payload)

    @pytest.mark.parametrize("price", ["0", "-5", "abc", "85.001", "NaN", None])
    def test_rejects_bad_price(self, price):
        payload = checkout_payload(1, 5)
        payload["items"][0]["variant_price"] = price
        with pytest.raises(ValidationError):
            validate_checkout_payload(payload)

    def test_items_from_another_agency_rejected(self):
        payload = checkout_payload(1, 5)
        payload["items"][0]["agency_id"] = 2
        with pytest.raises(ValidationError, match="same agency"):
            validate_checkout_payload(payload)

    def test_product_level_item_has_no_variant(self):
        payload = checkout_payload(1, 5)
        del payload["items"][0]["variant_label"]
        assert validate_checkout_payload(payload).items[0].variant_label is None

    def test_non_object_body(self):
        with pytest.raises(ValidationError):
            validate_checkout_payload(["not", "an", "object"])


class TestFieldCoercion:

    def test_coerce_int_accepts_digit_strings(self):
        assert coerce_int("42", "id") == 42

    def test_coerce_int_rejects_scientific_notation(self):
        with pytest.raises(ValidationError):
            coerce_int("1e3", "id")

    def test_otp_code_format(self):
        assert validate_otp_code(" 012345 ") == "012345"
        for bad in ("12345", "1234567", "abcdef", None, 123456):
            with pytest.raises(ValidationError):
                validate_otp_code(bad)
