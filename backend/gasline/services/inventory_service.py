# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

"""
Gasline Inventory Ledger (authoritative)

Stock model:
- One InventoryRecord per (agency, product) holds product-level stock.
- VariantStock rows hold per-variant stock (e.g. '14.2kg', '5kg').
- A line item with a variant_label draws on the variant row; without one it
  draws on the product-level record.

Business invariants:
- stock >= 0 at all times. Decrements are conditional UPDATEs
  (WHERE stock >= :qty) backed by CHECK constraints.
- A reservation is all-or-nothing. Availability of every row is checked
  before any decrement, and a decrement that loses a race raises so the
  caller's transaction rolls back as a whole.
- Stock is restored only by the cancel and return transitions, each of
  which runs at most once per order.

Transactions:
- reserve_stock and restore_stock never commit. They run inside the
  order_service transaction that also writes the order row.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from flask import current_app
from sqlalchemy import update

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Agency, InventoryRecord, Product, VariantStock
from gasline.money import to_cents


# =============================================================================
# LOOKUPS
# =============================================================================

def _get_record(agency_id: int, product_id: int) -> InventoryRecord | None:
    return (
        db.session.query(InventoryRecord)
        .filter_by(agency_id=agency_id, product_id=product_id)
        .first()
    )


def _resolve_row(agency_id: int, product_id: int, variant_label: str | None):
    """Return (model_class, row) for the stock counter a line draws on."""
    record = _get_record(agency_id, product_id)
    if record is None:
        raise NotFoundError(
            f"Product {product_id} is not stocked by this agency",
            {"product_id": product_id},
        )
    if variant_label is None:
        return InventoryRecord, record

    variant = (
        db.session.query(VariantStock)
        .filter_by(inventory_record_id=record.id, label=variant_label)
        .first()
    )
    if variant is None:
        raise NotFoundError(
            f"Variant '{variant_label}' not found for product {product_id}",
            {"product_id": product_id, "variant_label": variant_label},
        )
    return VariantStock, variant


def get_available_stock(agency_id: int, product_id: int, variant_label: str | None = None) -> int:
    _, row = _resolve_row(agency_id, product_id, variant_label)
    return int(row.stock)


# =============================================================================
# RESERVE / RESTORE
# =============================================================================

def reserve_stock(agency_id: int, items: Iterable) -> None:
    """
    Atomically decrement stock for every line of an order.

    items: iterable of objects with product_id, variant_label, quantity
    (validation.LineItem or OrderItem).

    Lines that draw on the same counter are aggregated first, so two lines
    of 3 against a stock of 5 are rejected as a demand of 6.

    Raises:
        NotFoundError: product or variant not stocked by the agency
        InsufficientStockError: any counter short (nothing is decremented)

    Does not commit.
    """
    demand: "OrderedDict[tuple, dict]" = OrderedDict()
    for item in items:
        model, row = _resolve_row(agency_id, item.product_id, item.variant_label)
        key = (model.__tablename__, row.id)
        entry = demand.setdefault(key, {
            "model": model,
            "row": row,
            "product_id": item.product_id,
            "variant_label": item.variant_label,
            "quantity": 0,
        })
        entry["quantity"] += int(item.quantity)

    shortages = [
        {
            "product_id": e["product_id"],
            "variant_label": e["variant_label"],
            "requested": e["quantity"],
            "available": int(e["row"].stock),
        }
        for e in demand.values()
        if e["row"].stock < e["quantity"]
    ]
    if shortages:
        first = shortages[0]
        raise InsufficientStockError(
            f"Insufficient stock for product {first['product_id']}: "
            f"requested {first['requested']}, available {first['available']}",
            {"shortages": shortages},
        )

    for entry in demand.values():
        model, qty = entry["model"], entry["quantity"]
        stmt = (
            update(model)
            .where(model.id == entry["row"].id, model.stock >= qty)
            .values(stock=model.stock - qty)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            current_app.logger.warning(
                "Stock reservation lost a race: agency=%s product=%s variant=%s qty=%s",
                agency_id, entry["product_id"], entry["variant_label"], qty,
            )
            raise InsufficientStockError(
                f"Insufficient stock for product {entry['product_id']}",
                {"product_id": entry["product_id"], "variant_label": entry["variant_label"]},
            )

    # Rows loaded above still carry the pre-decrement stock
    for entry in demand.values():
        db.session.expire(entry["row"], ["stock"])


def restore_stock(order) -> None:
    """
    Return every line of an order to its agency's stock.

    Counters that no longer exist (record or variant removed since checkout)
    are skipped with a warning; historical orders never block a cancel.

    Does not commit.
    """
    for item in order.items:
        record = _get_record(order.agency_id, item.product_id)
        if record is None:
            current_app.logger.warning(
                "Restore skipped: product %s no longer stocked by agency %s (order %s)",
                item.product_id, order.agency_id, order.order_number,
            )
            continue

        if item.variant_label is None:
            model, row = InventoryRecord, record
        else:
            variant = (
                db.session.query(VariantStock)
                .filter_by(inventory_record_id=record.id, label=item.variant_label)
                .first()
            )
            if variant is None:
                current_app.logger.warning(
                    "Restore skipped: variant %r missing for product %s (order %s)",
                    item.variant_label, item.product_id, order.order_number,
                )
                continue
            model, row = VariantStock, variant

        db.session.execute(
            update(model)
            .where(model.id == row.id)
            .values(stock=model.stock + item.quantity)
            .execution_options(synchronize_session=False)
        )
        db.session.expire(row, ["stock"])


# =============================================================================
# STOCK RECEIPT
# =============================================================================

def receive_stock(
    agency_id: int,
    product_id: int,
    quantity: int,
    *,
    variant_label: str | None = None,
    price=None,
    low_stock_threshold: int | None = None,
) -> InventoryRecord:
    """
    Add stock to an agency's record, creating the record/variant if needed.

    price is the variant's unit price and is only stored on variants.
    Commits.
    """
    if quantity is None or int(quantity) <= 0:
        raise ValidationError("quantity must be positive")

    if db.session.get(Agency, agency_id) is None:
        raise NotFoundError("Agency not found")
    if db.session.get(Product, product_id) is None:
        raise NotFoundError("Product not found")

    record = _get_record(agency_id, product_id)
    if record is None:
        record = InventoryRecord(agency_id=agency_id, product_id=product_id, stock=0)
        if low_stock_threshold is not None:
            record.low_stock_threshold = low_stock_threshold
        db.session.add(record)
        db.session.flush()

    if variant_label is None:
        record.stock = record.stock + int(quantity)
    else:
        variant = (
            db.session.query(VariantStock)
            .filter_by(inventory_record_id=record.id, label=variant_label)
            .first()
        )
        if variant is None:
            variant = VariantStock(inventory_record_id=record.id, label=variant_label, stock=0)
            db.session.add(variant)
        variant.stock = variant.stock + int(quantity)
        if price is not None:
            variant.price_cents = to_cents(price)

    db.session.commit()
    current_app.logger.info(
        "Stock received: agency=%s product=%s variant=%s qty=%s",
        agency_id, product_id, variant_label, quantity,
    )
    return record
