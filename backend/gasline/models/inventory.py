from __future__ import annotations

from ..extensions import db
from gasline.money import format_cents
from gasline.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog row referenced by inventory and order line items.

    Product CRUD lives outside this service; the row only needs to exist so
    inventory records and line items can point at it.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    unit = db.Column(db.String(50), nullable=True)
    category = db.Column(db.String(32), nullable=False, default="lpg")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "category": self.category,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryRecord(db.Model):
    """
    Agency-scoped stock counter for one product.

    INVARIANTS:
    - Exactly one record per (agency, product).
    - stock >= 0 at all times (CHECK constraint backs the conditional
      decrement in inventory_service).
    - Never deleted while historical orders reference the product.

    Variant-level counters live in VariantStock. A line item without a
    variant label draws on the product-level `stock` here.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("agency_id", "product_id", name="uq_inventory_agency_product"),
        db.CheckConstraint("stock >= 0", name="ck_inventory_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    agency = db.relationship("Agency", backref=db.backref("inventory_records", lazy=True))
    product = db.relationship("Product")
    variants = db.relationship(
        "VariantStock",
        backref="inventory_record",
        lazy=True,
        order_by="VariantStock.id",
    )

    def __repr__(self) -> str:
        return f"<InventoryRecord agency_id={self.agency_id} product_id={self.product_id} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agency_id": self.agency_id,
            "product_id": self.product_id,
            "stock": self.stock,
            "low_stock_threshold": self.low_stock_threshold,
            "variants": [v.to_dict() for v in self.variants],
            "updated_at": to_utc_z(self.updated_at),
        }


class VariantStock(db.Model):
    """Stock counter for one labelled variant (e.g. '14.2kg') of an inventory record."""
    __tablename__ = "variant_stocks"
    __table_args__ = (
        db.UniqueConstraint("inventory_record_id", "label", name="uq_variant_stock_record_label"),
        db.CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_record_id = db.Column(
        db.Integer, db.ForeignKey("inventory_records.id"), nullable=False, index=True
    )
    label = db.Column(db.String(50), nullable=False)
    price_cents = db.Column(db.Integer, nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "price": format_cents(self.price_cents),
            "price_cents": self.price_cents,
            "stock": self.stock,
        }
