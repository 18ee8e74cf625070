# Overview: Flask API routes for order operations; parses input and returns JSON responses.

"""
Order API Routes

Checkout is public; every other route requires a bearer token. Role and
ownership checks live in the services (TRANSITION_RULES and the
visibility filter), so each route only parses input and renders output.

Responses:
- success: {"success": true, "message": ..., "data": ...}
- failure: {"success": false, "message": ..., "details"?: ...}
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_roles
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_AGENT, ROLE_CUSTOMER
from ..services import order_query_service
from ..services.order_service import get_state_machine
from ..validation import (
    coerce_int,
    coerce_text,
    require_json_object,
    validate_checkout_payload,
    validate_optional_bool,
    validate_otp_code,
    validate_status_value,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _ok(data, message: str = "OK", status: int = 200):
    return jsonify({"success": True, "message": message, "data": data}), status


def _service_error(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


def _internal_error(action: str):
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"success": False, "message": "Internal server error"}), 500


def _json_body() -> dict:
    return require_json_object(request.get_json(silent=True))


def _order_payload(order) -> dict:
    return order.to_dict(include_agent=True)


# =============================================================================
# CHECKOUT
# =============================================================================

@orders_bp.post("/checkout")
def checkout_route():
    """
    Place an order (status: pending) and reserve its stock.

    Request body:
    {
        "agency_id": 1,
        "customer_name": "...", "customer_email": "...",
        "customer_phone": "9876543210", "customer_address": "...",
        "delivery_mode": "home_delivery" | "pickup",   (optional)
        "payment_method": "cash_on_delivery",          (optional)
        "items": [{"product_id": 3, "product_name": "LPG 14.2kg",
                   "variant_label": "14.2kg", "variant_price": "85.00",
                   "quantity": 2}]
    }

    Returns:
        201: Order created
        400: Invalid input, inactive agency or insufficient stock
        404: Agency, product or variant not found
    """
    try:
        checkout = validate_checkout_payload(request.get_json(silent=True))
        order = get_state_machine().create_order(checkout)
        return _ok(_order_payload(order), "Order placed successfully", 201)
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("create order")


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("/")
@require_auth
def list_orders_route():
    """
    List orders visible to the caller.

    Query params: status, search, id, agent_id, start_date, end_date,
    page, limit.
    """
    try:
        result = order_query_service.list_orders(g.caller, request.args.to_dict())
        return _ok({
            "orders": [_order_payload(o) for o in result["orders"]],
            "pagination": result["pagination"],
        })
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("list orders")


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_query_service.get_order_for_caller(order_id, g.caller)
        return _ok(_order_payload(order))
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("get order")


@orders_bp.get("/customer/summary")
@require_auth
@require_roles(ROLE_CUSTOMER)
def customer_summary_route():
    try:
        return _ok(order_query_service.customer_summary(g.caller))
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("build customer summary")


@orders_bp.get("/agent/history")
@require_auth
@require_roles(ROLE_AGENT)
def agent_history_route():
    try:
        result = order_query_service.agent_history(g.caller, request.args.to_dict())
        return _ok({
            "orders": [_order_payload(o) for o in result["orders"]],
            "pagination": result["pagination"],
        })
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("load agent history")


@orders_bp.get("/agent/stats")
@require_auth
@require_roles(ROLE_AGENT)
def agent_stats_route():
    try:
        return _ok(order_query_service.agent_stats(g.caller))
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("load agent stats")


# =============================================================================
# TRANSITIONS
# =============================================================================

@orders_bp.put("/<int:order_id>/status")
@require_auth
def update_status_route(order_id: int):
    """
    Request body:
    {
        "status": "confirmed" | "cancelled" | "delivered" | "returned",
        "reason": "...",        (cancel/return; falls back to the notes)
        "admin_notes": "...",   (optional; admin, agency owner)
        "agent_notes": "..."    (optional; admin, agent)
    }
    """
    try:
        data = _json_body()
        status = validate_status_value(data.get("status"))
        order = get_state_machine().update_status(
            order_id,
            status,
            g.caller,
            reason=data.get("reason"),
            admin_notes=coerce_text(data.get("admin_notes"), "admin_notes", max_length=1000, required=False),
            agent_notes=coerce_text(data.get("agent_notes"), "agent_notes", max_length=1000, required=False),
        )
        return _ok(_order_payload(order), "Order status updated successfully")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("update order status")


@orders_bp.put("/<int:order_id>/assign")
@require_auth
@require_roles(ROLE_ADMIN)
def assign_agent_route(order_id: int):
    """Request body: {"agent_id": 7}"""
    try:
        data = _json_body()
        if data.get("agent_id") is None:
            return jsonify({"success": False, "message": "agent_id is required"}), 400
        agent_id = coerce_int(data["agent_id"], "agent_id", minimum=1)
        order = get_state_machine().assign_agent(order_id, agent_id, g.caller)
        return _ok(_order_payload(order), "Delivery agent assigned successfully")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("assign delivery agent")


@orders_bp.post("/<int:order_id>/send-otp")
@require_auth
@require_roles(ROLE_AGENT)
def send_otp_route(order_id: int):
    """Send (or resend) the delivery OTP to the customer. The code is never returned."""
    try:
        order = get_state_machine().send_delivery_otp(order_id, g.caller)
        return _ok({
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "otp_expires_at": order.to_dict()["otp_expires_at"],
        }, "OTP sent to customer")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("send delivery OTP")


@orders_bp.post("/<int:order_id>/verify-otp")
@require_auth
@require_roles(ROLE_AGENT)
def verify_otp_route(order_id: int):
    """
    Request body:
    {
        "otp": "123456",
        "delivery_proof_image": "https://...",   (optional)
        "delivery_note": "...",                  (optional)
        "payment_received": true                 (optional)
    }
    """
    try:
        data = _json_body()
        order = get_state_machine().verify_delivery_otp(
            order_id,
            validate_otp_code(data.get("otp")),
            g.caller,
            delivery_proof_image=coerce_text(
                data.get("delivery_proof_image"), "delivery_proof_image", max_length=512, required=False
            ),
            delivery_note=coerce_text(data.get("delivery_note"), "delivery_note", max_length=1000, required=False),
            payment_received=validate_optional_bool(data.get("payment_received"), "payment_received"),
        )
        return _ok(_order_payload(order), "Order delivered successfully")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("verify delivery OTP")


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Request body: {"reason": "..."}"""
    try:
        data = _json_body()
        order = get_state_machine().cancel(order_id, data.get("reason"), g.caller)
        return _ok(_order_payload(order), "Order cancelled successfully")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("cancel order")


@orders_bp.put("/<int:order_id>/return")
@require_auth
def return_order_route(order_id: int):
    """Request body: {"reason": "..."}"""
    try:
        data = _json_body()
        order = get_state_machine().mark_returned(order_id, data.get("reason"), g.caller)
        return _ok(_order_payload(order), "Order marked as returned")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("return order")


@orders_bp.put("/<int:order_id>/mark-payment-received")
@require_auth
@require_roles(ROLE_ADMIN, ROLE_AGENCY_OWNER)
def mark_payment_received_route(order_id: int):
    try:
        order = get_state_machine().mark_payment_received(order_id, g.caller)
        return _ok(_order_payload(order), "Payment received and order completed")
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        return _internal_error("mark payment received")
