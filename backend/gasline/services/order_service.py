# Overview: Service-layer operations for orders; encapsulates the order state machine and its database work.

"""
Gasline Order State Machine

================================================================================
STATE GRAPH
================================================================================

    pending -> confirmed -> assigned -> out_for_delivery -> delivered -> returned
       |           |            |              |
       +-----------+------------+--------------+-------> cancelled

    pending/confirmed -> assigned           (assign_agent)
    assigned/out_for_delivery -> out_for_delivery   (send_delivery_otp, resend)
    pickup orders: pending..out_for_delivery -> delivered (mark_payment_received)

delivered, cancelled and returned are terminal for cancel; returned is only
reachable from delivered.

RULES:
1. Every transition is named and checked against TRANSITION_RULES:
   role first (ForbiddenError), then ownership through the visibility
   filter (ForbiddenError), then source status (IllegalTransitionError).
2. Each transition locks the order row and runs in one transaction.
   The optimistic version_id column turns a concurrent write into a
   StaleDataError, which run_with_retry retries; the re-read re-validates.
3. Stock is reserved in the transaction that inserts the order and
   restored in the transaction that cancels or returns it. Because the
   source status is re-checked under the lock, restore runs at most once.
4. Events are emitted after commit and never roll a transition back.
================================================================================
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Callable

from flask import current_app

from ..errors import (
    ConflictError,
    ForbiddenError,
    IllegalTransitionError,
    InvalidOTPError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Agency, DeliveryAgent, Order, OrderItem
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_AGENT, ROLE_CUSTOMER
from ..models.orders import (
    ACTOR_ADMIN,
    ACTOR_AGENCY,
    ACTOR_CUSTOMER,
    ACTOR_SYSTEM,
    DELIVERY_PICKUP,
    ORDER_STATUSES,
    PAYMENT_PAID,
    STATUS_ASSIGNED,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_PENDING,
    STATUS_RETURNED,
    TERMINAL_STATUSES,
)
from ..validation import CheckoutRequest
from . import inventory_service, notification_service as events
from .concurrency import lock_for_update, run_with_retry
from .otp_service import generate_otp_code, is_otp_valid
from .totals_service import calculate_totals, line_total
from .visibility_service import ROLE_SYSTEM, Caller, can_access
from gasline.money import to_cents
from gasline.time_utils import to_utc_z, utcnow


# =============================================================================
# TRANSITION RULES
# =============================================================================

@dataclass(frozen=True)
class TransitionRule:
    allowed_from: frozenset
    roles: frozenset
    pickup_only: bool = False


_CANCELLABLE = frozenset(ORDER_STATUSES) - TERMINAL_STATUSES
_CANCEL_RETURN_ROLES = frozenset({ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_CUSTOMER, ROLE_SYSTEM})

TRANSITION_RULES: dict[str, TransitionRule] = {
    "confirm": TransitionRule(frozenset({STATUS_PENDING}), frozenset({ROLE_ADMIN})),
    "assign": TransitionRule(frozenset({STATUS_PENDING, STATUS_CONFIRMED}), frozenset({ROLE_ADMIN})),
    "send_otp": TransitionRule(
        frozenset({STATUS_ASSIGNED, STATUS_OUT_FOR_DELIVERY}), frozenset({ROLE_AGENT})
    ),
    "deliver": TransitionRule(frozenset({STATUS_OUT_FOR_DELIVERY}), frozenset({ROLE_AGENT})),
    "mark_payment_received": TransitionRule(
        _CANCELLABLE, frozenset({ROLE_ADMIN, ROLE_AGENCY_OWNER}), pickup_only=True
    ),
    "cancel": TransitionRule(_CANCELLABLE, _CANCEL_RETURN_ROLES),
    "return": TransitionRule(frozenset({STATUS_DELIVERED}), _CANCEL_RETURN_ROLES),
}

_ILLEGAL_MESSAGES = {
    "confirm": "Only pending orders can be confirmed",
    "assign": "Order cannot be assigned in its current status",
    "send_otp": "OTP can only be sent for assigned or out for delivery orders",
    "deliver": "Order is not out for delivery",
    "mark_payment_received": "Order cannot be completed in its current status",
    "cancel": "Order cannot be cancelled in its current status",
    "return": "Only delivered orders can be returned",
}

_ACTOR_BY_ROLE = {
    ROLE_CUSTOMER: ACTOR_CUSTOMER,
    ROLE_ADMIN: ACTOR_ADMIN,
    ROLE_AGENCY_OWNER: ACTOR_AGENCY,
    ROLE_SYSTEM: ACTOR_SYSTEM,
}

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def check_transition(action: str, caller: Caller, order: Order) -> None:
    """
    Validate a named transition for caller on order.

    Raises ForbiddenError (role or ownership) or IllegalTransitionError
    (source status). Does not mutate anything.
    """
    rule = TRANSITION_RULES[action]
    if caller.role not in rule.roles:
        raise ForbiddenError(f"Role '{caller.role}' cannot perform '{action}'")
    if not can_access(caller, order):
        raise ForbiddenError("You do not have access to this order")
    if rule.pickup_only and order.delivery_mode != DELIVERY_PICKUP:
        raise IllegalTransitionError("Payment can only be marked received for pickup orders")
    if order.status not in rule.allowed_from:
        raise IllegalTransitionError(
            _ILLEGAL_MESSAGES[action],
            {"status": order.status, "action": action},
        )


def generate_order_number(now=None) -> str:
    """ORD-<last 6 digits of epoch ms>-<6 uppercase alphanumerics>."""
    now = now or utcnow()
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(6))
    return f"ORD-{millis % 1_000_000:06d}-{suffix}"


# =============================================================================
# STATE MACHINE
# =============================================================================

class OrderStateMachine:
    """
    Named order transitions with an injected emitter, clock and OTP source.

    One instance is built by create_app and kept in
    app.extensions["order_state_machine"]; tests build their own.
    """

    def __init__(
        self,
        emitter: events.NotificationEmitter | None = None,
        *,
        clock: Callable = utcnow,
        otp_generator: Callable[[], str] = generate_otp_code,
    ):
        self.emitter = emitter or events.NullEmitter()
        self.clock = clock
        self.otp_generator = otp_generator

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def _emit(self, order: Order, event_type: str, *, extra=None, private=None) -> None:
        try:
            event = events.build_event(event_type, order, extra=extra, private=private, now=self.clock())
            self.emitter.emit(event)
        except Exception:
            current_app.logger.exception("Failed to emit %s for order %s", event_type, order.order_number)

    def _load_locked(self, order_id: int) -> Order:
        query = db.session.query(Order).filter(Order.id == order_id).populate_existing()
        order = lock_for_update(query).first()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _transition(
        self,
        order_id: int,
        caller: Caller,
        action: str,
        apply: Callable[[Order], None],
        notes: dict | None = None,
    ) -> Order:
        """
        Lock, validate, mutate and commit one transition; retried on conflicts.

        notes ({"admin_notes": ..., "agent_notes": ...}) are written in the
        same transaction; callers check them with check_note_permissions first.
        """
        def _op() -> Order:
            order = self._load_locked(order_id)
            check_transition(action, caller, order)
            apply(order)
            _write_notes(order, notes)
            db.session.commit()
            return order

        order = run_with_retry(_op)
        current_app.logger.info(
            "Order %s: %s by %s (%s) -> %s",
            order.order_number, action, caller.role, caller.id, order.status,
        )
        return order

    # -------------------------------------------------------------------------
    # create
    # -------------------------------------------------------------------------

    def create_order(self, request: CheckoutRequest) -> Order:
        """
        Insert a pending order and reserve its stock in one transaction.

        Raises NotFoundError (agency/product/variant), ConflictError
        (inactive agency) or InsufficientStockError. On any failure no
        stock is decremented and no order row exists.
        """
        agency = db.session.get(Agency, request.agency_id)
        if agency is None:
            raise NotFoundError("Agency not found")
        if not agency.is_active:
            raise ConflictError("Agency is not accepting orders")

        totals = calculate_totals(request.items)

        def _op() -> Order:
            now = self.clock()
            inventory_service.reserve_stock(request.agency_id, request.items)

            order = Order(
                order_number=generate_order_number(now),
                customer_name=request.customer_name,
                customer_email=request.customer_email,
                customer_phone=request.customer_phone,
                customer_address=request.customer_address,
                delivery_mode=request.delivery_mode,
                subtotal_cents=to_cents(totals["subtotal"]),
                total_amount_cents=to_cents(totals["total_amount"]),
                payment_method=request.payment_method,
                status=STATUS_PENDING,
                agency_id=request.agency_id,
                created_at=now,
                updated_at=now,
            )
            for position, item in enumerate(request.items):
                order.items.append(OrderItem(
                    position=position,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    variant_label=item.variant_label,
                    variant_price_cents=to_cents(item.variant_price),
                    quantity=item.quantity,
                    line_total_cents=to_cents(line_total(item.variant_price, item.quantity)),
                ))
            db.session.add(order)
            db.session.commit()
            return order

        order = run_with_retry(_op)
        current_app.logger.info(
            "Order created: %s agency=%s total=%s",
            order.order_number, order.agency_id, totals["total_amount"],
        )
        self._emit(order, events.ORDER_CREATED, extra={"total_amount": str(totals["total_amount"])})
        return order

    # -------------------------------------------------------------------------
    # admin transitions
    # -------------------------------------------------------------------------

    def confirm(self, order_id: int, caller: Caller, *, notes: dict | None = None) -> Order:
        def apply(order: Order) -> None:
            order.status = STATUS_CONFIRMED
            order.confirmed_at = self.clock()

        order = self._transition(order_id, caller, "confirm", apply, notes)
        self._emit(order, events.ORDER_CONFIRMED)
        return order

    def assign_agent(self, order_id: int, agent_id: int, caller: Caller) -> Order:
        """Assign a delivery agent of the order's own agency."""
        def apply(order: Order) -> None:
            agent = db.session.get(DeliveryAgent, agent_id)
            if agent is None:
                raise NotFoundError("Delivery agent not found")
            if agent.agency_id != order.agency_id:
                raise ConflictError("Agent does not belong to the order's agency")
            order.assigned_agent_id = agent.id
            order.status = STATUS_ASSIGNED
            order.assigned_at = self.clock()

        order = self._transition(order_id, caller, "assign", apply)
        self._emit(order, events.ORDER_ASSIGNED, extra={
            "agent_id": order.assigned_agent_id,
            "agent": order.assigned_agent.to_summary() if order.assigned_agent else None,
        })
        return order

    # -------------------------------------------------------------------------
    # agent transitions
    # -------------------------------------------------------------------------

    def send_delivery_otp(self, order_id: int, caller: Caller) -> Order:
        """
        Issue a fresh delivery OTP, moving assigned -> out_for_delivery.

        Calling again while out_for_delivery replaces the code and expiry
        (resend); out_for_delivery_at is only stamped the first time.
        """
        first_dispatch = {"value": False}
        code_holder = {}

        def apply(order: Order) -> None:
            now = self.clock()
            ttl = timedelta(minutes=current_app.config.get("DELIVERY_OTP_TTL_MINUTES", 10))
            code = self.otp_generator()
            order.delivery_otp = code
            order.otp_expires_at = now + ttl
            first_dispatch["value"] = order.status == STATUS_ASSIGNED
            if order.out_for_delivery_at is None:
                order.out_for_delivery_at = now
            order.status = STATUS_OUT_FOR_DELIVERY
            code_holder["otp"] = code

        order = self._transition(order_id, caller, "send_otp", apply)
        if first_dispatch["value"]:
            self._emit(order, events.ORDER_OUT_FOR_DELIVERY)
        self._emit(
            order,
            events.OTP_SENT,
            extra={"otp_expires_at": to_utc_z(order.otp_expires_at)},
            private={"otp": code_holder["otp"]},
        )
        return order

    def verify_delivery_otp(
        self,
        order_id: int,
        code: str,
        caller: Caller,
        *,
        delivery_proof_image: str | None = None,
        delivery_note: str | None = None,
        payment_received: bool | None = None,
    ) -> Order:
        """
        Complete a delivery with the customer's OTP.

        A wrong or expired code raises InvalidOTPError and leaves the order
        untouched, so the agent may retry or resend. A correct code clears
        the OTP; it cannot be used twice.
        """
        def apply(order: Order) -> None:
            now = self.clock()
            if not is_otp_valid(code, order.delivery_otp, order.otp_expires_at, now):
                raise InvalidOTPError()
            order.status = STATUS_DELIVERED
            order.delivered_at = now
            order.delivery_otp = None
            order.otp_expires_at = None
            if delivery_proof_image:
                order.delivery_proof_image = delivery_proof_image
            if delivery_note:
                order.delivery_note = delivery_note
            if payment_received:
                order.payment_received = True
                order.payment_status = PAYMENT_PAID

        try:
            order = self._transition(order_id, caller, "deliver", apply)
        except InvalidOTPError:
            current_app.logger.info("Delivery OTP rejected for order id=%s by agent %s",
                                    order_id, caller.delivery_agent_id)
            raise
        self._emit(order, events.ORDER_DELIVERED, extra={"payment_received": order.payment_received})
        return order

    # -------------------------------------------------------------------------
    # pickup completion
    # -------------------------------------------------------------------------

    def mark_payment_received(self, order_id: int, caller: Caller, *, notes: dict | None = None) -> Order:
        """Pickup orders: record payment and complete in one step."""
        def apply(order: Order) -> None:
            now = self.clock()
            order.payment_received = True
            order.payment_status = PAYMENT_PAID
            order.status = STATUS_DELIVERED
            order.delivered_at = now
            order.delivery_otp = None
            order.otp_expires_at = None

        order = self._transition(order_id, caller, "mark_payment_received", apply, notes)
        self._emit(order, events.ORDER_DELIVERED, extra={"payment_received": True})
        return order

    # -------------------------------------------------------------------------
    # cancel / return
    # -------------------------------------------------------------------------

    def cancel(self, order_id: int, reason: str, caller: Caller, *, notes: dict | None = None) -> Order:
        """Cancel a non-terminal order and restore its stock."""
        reason = _require_reason(reason, "Cancellation reason")

        def apply(order: Order) -> None:
            order.status = STATUS_CANCELLED
            order.cancelled_at = self.clock()
            order.cancelled_by = _ACTOR_BY_ROLE[caller.role]
            order.cancelled_by_id = caller.id
            order.cancelled_by_name = caller.display_name
            order.cancel_reason = reason
            order.delivery_otp = None
            order.otp_expires_at = None
            inventory_service.restore_stock(order)

        order = self._transition(order_id, caller, "cancel", apply, notes)
        self._emit(order, events.ORDER_CANCELLED, extra={
            "reason": reason,
            "cancelled_by": order.cancelled_by,
        })
        return order

    def mark_returned(self, order_id: int, reason: str, caller: Caller, *, notes: dict | None = None) -> Order:
        """Return a delivered order and restore its stock."""
        reason = _require_reason(reason, "Return reason")

        def apply(order: Order) -> None:
            order.status = STATUS_RETURNED
            order.returned_at = self.clock()
            order.returned_by = _ACTOR_BY_ROLE[caller.role]
            order.returned_by_id = caller.id
            order.returned_by_name = caller.display_name
            order.return_reason = reason
            inventory_service.restore_stock(order)

        order = self._transition(order_id, caller, "return", apply, notes)
        self._emit(order, events.ORDER_RETURNED, extra={
            "reason": reason,
            "returned_by": order.returned_by,
        })
        return order

    # -------------------------------------------------------------------------
    # generic status endpoint
    # -------------------------------------------------------------------------

    def update_status(
        self,
        order_id: int,
        status: str,
        caller: Caller,
        *,
        reason: str | None = None,
        admin_notes: str | None = None,
        agent_notes: str | None = None,
    ) -> Order:
        """
        Move an order to `status` through the matching named transition.

        assigned and out_for_delivery need extra input and have their own
        operations (assign_agent, send_delivery_otp). delivered is only
        reachable here for pickup orders; home deliveries need the OTP.

        Cancel and return take their reason from `reason`, falling back to
        the notes. Note permissions are checked before anything is touched,
        and the notes commit together with the transition.
        """
        notes = check_note_permissions(caller, admin_notes=admin_notes, agent_notes=agent_notes)
        reason = reason or admin_notes or agent_notes or ""

        if status == STATUS_CONFIRMED:
            return self.confirm(order_id, caller, notes=notes)
        if status == STATUS_CANCELLED:
            return self.cancel(order_id, reason, caller, notes=notes)
        if status == STATUS_RETURNED:
            return self.mark_returned(order_id, reason, caller, notes=notes)
        if status == STATUS_DELIVERED:
            order = self._load_visible(order_id, caller)
            if order.delivery_mode != DELIVERY_PICKUP:
                raise IllegalTransitionError("Home deliveries are completed with the delivery OTP")
            return self.mark_payment_received(order_id, caller, notes=notes)
        if status == STATUS_ASSIGNED:
            raise ConflictError("Use the assign endpoint to assign a delivery agent")
        if status == STATUS_OUT_FOR_DELIVERY:
            raise ConflictError("Use the send-otp endpoint to dispatch an order")
        raise IllegalTransitionError("Orders cannot be moved back to pending")

    def add_notes(self, order_id: int, caller: Caller, *, admin_notes=None, agent_notes=None) -> Order:
        notes = check_note_permissions(caller, admin_notes=admin_notes, agent_notes=agent_notes)

        def _op() -> Order:
            order = self._load_locked(order_id)
            if not can_access(caller, order):
                raise ForbiddenError("You do not have access to this order")
            _write_notes(order, notes)
            db.session.commit()
            return order

        return run_with_retry(_op)

    def _load_visible(self, order_id: int, caller: Caller) -> Order:
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not can_access(caller, order):
            raise ForbiddenError("You do not have access to this order")
        return order


def check_note_permissions(caller: Caller, *, admin_notes=None, agent_notes=None) -> dict | None:
    """
    Validate who may write which notes; return them as a dict for _write_notes.

    admin_notes: admin, agency owner, system. agent_notes: admin, agent.
    """
    notes = {}
    if admin_notes is not None:
        if caller.role not in (ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_SYSTEM):
            raise ForbiddenError("Only admins and agencies can write admin notes")
        notes["admin_notes"] = admin_notes
    if agent_notes is not None:
        if caller.role not in (ROLE_ADMIN, ROLE_AGENT):
            raise ForbiddenError("Only agents can write agent notes")
        notes["agent_notes"] = agent_notes
    return notes or None


def _write_notes(order: Order, notes: dict | None) -> None:
    for field, value in (notes or {}).items():
        setattr(order, field, value)


def _require_reason(reason, label: str) -> str:
    text = (reason or "").strip() if isinstance(reason, str) or reason is None else None
    if text is None:
        raise ValidationError(f"{label} must be a string")
    if not text:
        raise ValidationError(f"{label} is required")
    if len(text) > 500:
        raise ValidationError(f"{label} cannot exceed 500 characters")
    return text


def get_state_machine() -> OrderStateMachine:
    return current_app.extensions["order_state_machine"]
