# Overview: Pytest coverage for agency-scoped stock reservation and restore.

"""
Inventory Ledger Tests

Proves that:
1. Reservation is all-or-nothing and never drives stock negative
2. Demand against one counter is aggregated across lines
3. Stock is agency-scoped (agency B's stock is never touched by agency A orders)
4. restore_stock returns exactly what was reserved
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from gasline.errors import InsufficientStockError, NotFoundError, ValidationError
from gasline.extensions import db
from gasline.models import InventoryRecord, Order, VariantStock
from gasline.services import inventory_service
from gasline.validation import LineItem, validate_checkout_payload
from conftest import checkout_payload


def _line(product, qty, label="14.2kg", price="85.00"):
    return LineItem(product_id=product.id, product_name=product.name, variant_label=label,
                    variant_price=Decimal(price), quantity=qty)


class TestReceiveStock:

    def test_creates_record_and_variant(self, db_session, agency_a, cylinder):
        inventory_service.receive_stock(agency_a.id, cylinder.id, 5, variant_label="14.2kg", price="85.00")
        inventory_service.receive_stock(agency_a.id, cylinder.id, 3, variant_label="14.2kg")

        record = db_session.query(InventoryRecord).filter_by(agency_id=agency_a.id).one()
        variant = db_session.query(VariantStock).filter_by(inventory_record_id=record.id).one()
        assert variant.stock == 8
        assert variant.price_cents == 8500
        assert record.stock == 0

    def test_rejects_non_positive_quantity(self, db_session, agency_a, cylinder):
        with pytest.raises(ValidationError):
            inventory_service.receive_stock(agency_a.id, cylinder.id, 0)

    def test_unknown_agency(self, db_session, cylinder):
        with pytest.raises(NotFoundError):
            inventory_service.receive_stock(99999, cylinder.id, 1)


class TestReserveStock:

    def test_decrements_variant_stock(self, app, stocked, agency_a, cylinder, stock_of):
        inventory_service.reserve_stock(agency_a.id, [_line(cylinder, 2)])
        db.session.commit()
        assert stock_of(agency_a, cylinder, "14.2kg") == 8

    def test_product_level_line(self, app, stocked, agency_a, regulator, stock_of):
        inventory_service.reserve_stock(agency_a.id, [_line(regulator, 3, label=None, price="150.00")])
        db.session.commit()
        assert stock_of(agency_a, regulator) == 0

    def test_insufficient_stock_touches_nothing(self, app, stocked, agency_a, cylinder, regulator, stock_of):
        lines = [_line(cylinder, 2), _line(regulator, 4, label=None, price="150.00")]
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.reserve_stock(agency_a.id, lines)
        db.session.rollback()

        assert exc.value.details["shortages"][0]["product_id"] == regulator.id
        assert stock_of(agency_a, cylinder, "14.2kg") == 10
        assert stock_of(agency_a, regulator) == 3

    def test_demand_is_aggregated_per_counter(self, app, stocked, agency_a, cylinder, stock_of):
        # 3 + 2 exceeds the 4 in stock even though each line fits alone
        lines = [_line(cylinder, 3, label="5kg", price="40.00"), _line(cylinder, 2, label="5kg", price="40.00")]
        with pytest.raises(InsufficientStockError):
            inventory_service.reserve_stock(agency_a.id, lines)
        db.session.rollback()
        assert stock_of(agency_a, cylinder, "5kg") == 4

    def test_stock_is_agency_scoped(self, app, stocked, agency_a, agency_b, cylinder, stock_of):
        inventory_service.reserve_stock(agency_b.id, [_line(cylinder, 2, price="90.00")])
        db.session.commit()
        assert stock_of(agency_b, cylinder, "14.2kg") == 0
        assert stock_of(agency_a, cylinder, "14.2kg") == 10

        with pytest.raises(InsufficientStockError):
            inventory_service.reserve_stock(agency_b.id, [_line(cylinder, 1, price="90.00")])
        db.session.rollback()

    def test_unknown_variant(self, app, stocked, agency_a, cylinder):
        with pytest.raises(NotFoundError):
            inventory_service.reserve_stock(agency_a.id, [_line(cylinder, 1, label="19kg")])

    def test_product_not_stocked_by_agency(self, app, stocked, agency_b, regulator):
        with pytest.raises(NotFoundError):
            inventory_service.reserve_stock(agency_b.id, [_line(regulator, 1, label=None)])

    def test_exact_stock_can_be_reserved(self, app, stocked, agency_a, cylinder, stock_of):
        inventory_service.reserve_stock(agency_a.id, [_line(cylinder, 10)])
        db.session.commit()
        assert stock_of(agency_a, cylinder, "14.2kg") == 0

    def test_sequential_reservations_never_oversell(self, app, stocked, agency_a, cylinder, stock_of):
        """Ten single-unit checkouts empty the counter; the eleventh is refused."""
        for _ in range(10):
            inventory_service.reserve_stock(agency_a.id, [_line(cylinder, 1)])
            db.session.commit()

        with pytest.raises(InsufficientStockError):
            inventory_service.reserve_stock(agency_a.id, [_line(cylinder, 1)])
        db.session.rollback()
        assert stock_of(agency_a, cylinder, "14.2kg") == 0

    def test_counter_drained_after_check_rejects_whole_order(
        self, app, machine, stocked, agency_a, cylinder, regulator, stock_of, monkeypatch
    ):
        """A counter emptied between the availability check and the UPDATE fails the checkout."""
        real_resolve = inventory_service._resolve_row

        def resolve_then_drain(agency_id, product_id, variant_label):
            model, row = real_resolve(agency_id, product_id, variant_label)
            if product_id == cylinder.id:
                db.session.execute(
                    update(model).where(model.id == row.id).values(stock=0)
                    .execution_options(synchronize_session=False)
                )
            return model, row

        monkeypatch.setattr(inventory_service, "_resolve_row", resolve_then_drain)
        items = [
            {"product_id": regulator.id, "product_name": "Gas Regulator", "variant_label": None,
             "variant_price": "15.00", "quantity": 1},
            {"product_id": cylinder.id, "product_name": "LPG Cylinder", "variant_label": "14.2kg",
             "variant_price": "85.00", "quantity": 2},
        ]
        request = validate_checkout_payload(checkout_payload(agency_a.id, cylinder.id, items=items))

        with pytest.raises(InsufficientStockError):
            machine.create_order(request)

        monkeypatch.undo()
        assert db.session.query(Order).count() == 0
        assert stock_of(agency_a, regulator) == 3
        assert stock_of(agency_a, cylinder, "5kg") == 4


class TestRestoreStock:

    def test_restore_after_order_cancel_path(self, place_order, agency_a, cylinder, stock_of):
        order = place_order()
        assert stock_of(agency_a, cylinder, "14.2kg") == 8

        inventory_service.restore_stock(order)
        db.session.commit()
        assert stock_of(agency_a, cylinder, "14.2kg") == 10
