from __future__ import annotations

from ..extensions import db
from .agencies import sql_in_list
from gasline.money import format_cents
from gasline.time_utils import to_utc_z, utcnow


# =============================================================================
# ORDER CONSTANTS
# =============================================================================

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_ASSIGNED = "assigned"
STATUS_OUT_FOR_DELIVERY = "out_for_delivery"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_RETURNED = "returned"

ORDER_STATUSES = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_ASSIGNED,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_RETURNED,
)
TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED, STATUS_RETURNED})
AGENT_ACTIVE_STATUSES = (STATUS_ASSIGNED, STATUS_OUT_FOR_DELIVERY)
AGENT_HISTORY_STATUSES = (STATUS_DELIVERED, STATUS_CANCELLED, STATUS_RETURNED)

DELIVERY_HOME = "home_delivery"
DELIVERY_PICKUP = "pickup"
DELIVERY_MODES = (DELIVERY_HOME, DELIVERY_PICKUP)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED)

# Provenance recorded on cancel/return
ACTOR_CUSTOMER = "customer"
ACTOR_ADMIN = "admin"
ACTOR_AGENCY = "agency"
ACTOR_SYSTEM = "system"
ACTORS = (ACTOR_CUSTOMER, ACTOR_ADMIN, ACTOR_AGENCY, ACTOR_SYSTEM)


class Order(db.Model):
    """
    Order aggregate root.

    The customer details and line items are point-in-time snapshots taken at
    checkout; they are never joined live against customer accounts or the
    catalog. Totals are derived once at creation and never edited.

    Transition timestamps and cancel/return provenance are written only by
    order_service.OrderStateMachine. version_id gives optimistic locking so
    two concurrent transitions on one order cannot both commit.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_agency_status_created", "agency_id", "status", "created_at"),
        db.Index("ix_orders_agent_status", "assigned_agent_id", "status"),
        db.Index("ix_orders_customer_email_created", "customer_email", "created_at"),
        db.CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_non_negative"),
        db.CheckConstraint(sql_in_list("status", ORDER_STATUSES), name="ck_orders_status"),
        db.CheckConstraint(sql_in_list("payment_status", PAYMENT_STATUSES), name="ck_orders_payment_status"),
        db.CheckConstraint(
            "cancelled_by IS NULL OR " + sql_in_list("cancelled_by", ACTORS), name="ck_orders_cancelled_by"
        ),
        db.CheckConstraint(
            "returned_by IS NULL OR " + sql_in_list("returned_by", ACTORS), name="ck_orders_returned_by"
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # Customer snapshot
    customer_name = db.Column(db.String(100), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(15), nullable=False)
    customer_address = db.Column(db.Text, nullable=False)

    delivery_mode = db.Column(db.String(16), nullable=False, default=DELIVERY_HOME)

    # Authoritative storage in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False, default="cash_on_delivery")
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)

    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)

    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False, index=True)
    assigned_agent_id = db.Column(db.Integer, db.ForeignKey("delivery_agents.id"), nullable=True, index=True)

    # Present only while out_for_delivery
    delivery_otp = db.Column(db.String(6), nullable=True)
    otp_expires_at = db.Column(db.DateTime(), nullable=True)

    # Transition stamps (each set once)
    confirmed_at = db.Column(db.DateTime(), nullable=True)
    assigned_at = db.Column(db.DateTime(), nullable=True)
    out_for_delivery_at = db.Column(db.DateTime(), nullable=True)
    delivered_at = db.Column(db.DateTime(), nullable=True)
    cancelled_at = db.Column(db.DateTime(), nullable=True)
    returned_at = db.Column(db.DateTime(), nullable=True)

    # Cancellation provenance
    cancelled_by = db.Column(db.String(16), nullable=True)
    cancelled_by_id = db.Column(db.Integer, nullable=True)
    cancelled_by_name = db.Column(db.String(255), nullable=True)
    cancel_reason = db.Column(db.String(500), nullable=True)

    # Return provenance
    returned_by = db.Column(db.String(16), nullable=True)
    returned_by_id = db.Column(db.Integer, nullable=True)
    returned_by_name = db.Column(db.String(255), nullable=True)
    return_reason = db.Column(db.String(500), nullable=True)

    # Captured at delivery
    delivery_proof_image = db.Column(db.String(512), nullable=True)
    delivery_note = db.Column(db.Text, nullable=True)
    payment_received = db.Column(db.Boolean, nullable=False, default=False)

    admin_notes = db.Column(db.Text, nullable=True)
    agent_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    agency = db.relationship("Agency", backref=db.backref("orders", lazy=True))
    assigned_agent = db.relationship("DeliveryAgent", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def snapshot(self) -> dict:
        """Compact order data handed to notification and email consumers."""
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "delivery_mode": self.delivery_mode,
            "status": self.status,
            "total_amount": format_cents(self.total_amount_cents),
            "items": [item.to_dict() for item in self.items],
        }

    def to_dict(self, include_agent: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "delivery_mode": self.delivery_mode,
            "items": [item.to_dict() for item in self.items],
            "subtotal": format_cents(self.subtotal_cents),
            "subtotal_cents": self.subtotal_cents,
            "total_amount": format_cents(self.total_amount_cents),
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "agency_id": self.agency_id,
            "assigned_agent_id": self.assigned_agent_id,
            "otp_expires_at": to_utc_z(self.otp_expires_at),
            "admin_notes": self.admin_notes,
            "agent_notes": self.agent_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "assigned_at": to_utc_z(self.assigned_at),
            "out_for_delivery_at": to_utc_z(self.out_for_delivery_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancelled_by_id": self.cancelled_by_id,
            "cancelled_by_name": self.cancelled_by_name,
            "cancel_reason": self.cancel_reason,
            "returned_at": to_utc_z(self.returned_at),
            "returned_by": self.returned_by,
            "returned_by_id": self.returned_by_id,
            "returned_by_name": self.returned_by_name,
            "return_reason": self.return_reason,
            "delivery_proof_image": self.delivery_proof_image,
            "delivery_note": self.delivery_note,
            "payment_received": self.payment_received,
            "version_id": self.version_id,
        }
        if self.agency is not None:
            data["agency"] = {
                "id": self.agency.id,
                "name": self.agency.name,
                "phone": self.agency.phone,
                "city": self.agency.city,
                "status": self.agency.status,
            }
        if include_agent and self.assigned_agent is not None:
            data["assigned_agent"] = self.assigned_agent.to_summary()
        return data


class OrderItem(db.Model):
    """Line item snapshot: product/variant, unit price and quantity at checkout."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "position", name="uq_order_items_order_position"),
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(200), nullable=False)
    variant_label = db.Column(db.String(50), nullable=True)
    variant_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "variant_label": self.variant_label,
            "variant_price": format_cents(self.variant_price_cents),
            "quantity": self.quantity,
            "line_total": format_cents(self.line_total_cents),
        }
