# Overview: Read-side order queries; every query is narrowed by the visibility filter first.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_AGENT, ROLE_CUSTOMER
from ..models.orders import (
    AGENT_ACTIVE_STATUSES,
    AGENT_HISTORY_STATUSES,
    ORDER_STATUSES,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_RETURNED,
)
from ..validation import coerce_int
from .visibility_service import Caller, apply_scope, require_access
from gasline.money import format_cents
from gasline.time_utils import day_window, end_of_day, is_date_only, parse_iso_datetime, utcnow


DEFAULT_PAGE_SIZE = 20


def _parse_bound(value: str | None, field: str, *, end: bool) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime")
    # A bare end date covers that whole day
    if end and is_date_only(value):
        parsed = end_of_day(parsed.date())
    return parsed


def pagination_params(filters: dict) -> tuple[int, int]:
    page = coerce_int(filters.get("page") or 1, "page", minimum=1)
    limit = coerce_int(filters.get("limit") or DEFAULT_PAGE_SIZE, "limit", minimum=1)
    max_limit = current_app.config.get("ORDERS_MAX_PAGE_SIZE", 100)
    return page, min(limit, max_limit)


def _paginate(query, page: int, limit: int) -> dict:
    total = query.order_by(None).count()
    rows = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "orders": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if total else 0,
        },
    }


def list_orders(caller: Caller, filters: dict | None = None) -> dict:
    """
    List orders visible to caller, newest first.

    filters (all optional): status, search, id, agent_id, start_date,
    end_date, page, limit. Agents only ever list their active orders
    (assigned, out_for_delivery); a status filter narrows that set.

    Returns {"orders": [Order, ...], "pagination": {...}}.
    """
    filters = filters or {}
    query = apply_scope(db.session.query(Order), caller)

    status = filters.get("status") or None
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}")

    if caller.role == ROLE_AGENT:
        allowed = [s for s in AGENT_ACTIVE_STATUSES if status is None or s == status]
        query = query.filter(Order.status.in_(allowed))
    elif status is not None:
        query = query.filter(Order.status == status)

    order_id = filters.get("id")
    if order_id not in (None, ""):
        query = query.filter(Order.id == coerce_int(order_id, "id", minimum=1))

    agent_id = filters.get("agent_id")
    if agent_id not in (None, ""):
        if caller.role not in (ROLE_ADMIN, ROLE_AGENCY_OWNER):
            raise ForbiddenError("Filtering by agent is limited to admins and agencies")
        query = query.filter(Order.assigned_agent_id == coerce_int(agent_id, "agent_id", minimum=1))

    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Order.order_number.ilike(pattern),
            Order.customer_name.ilike(pattern),
            Order.customer_email.ilike(pattern),
            Order.customer_phone.ilike(pattern),
        ))

    start = _parse_bound(filters.get("start_date"), "start_date", end=False)
    end = _parse_bound(filters.get("end_date"), "end_date", end=True)
    if start and end and start > end:
        raise ValidationError("start_date must be before end_date")
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= end)

    page, limit = pagination_params(filters)
    return _paginate(query, page, limit)


def get_order_for_caller(order_id: int, caller: Caller) -> Order:
    """404 when the order does not exist, 403 when it is outside the caller's scope."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    require_access(caller, order)
    return order


# =============================================================================
# CUSTOMER / AGENT SUMMARIES
# =============================================================================

def customer_summary(caller: Caller) -> dict:
    if caller.role != ROLE_CUSTOMER:
        raise ForbiddenError("Only customers have an order summary")

    scoped = apply_scope(db.session.query(Order.status, func.count(Order.id), func.sum(Order.total_amount_cents)), caller)
    rows = scoped.group_by(Order.status).all()

    by_status = {status: 0 for status in ORDER_STATUSES}
    total_orders = 0
    total_cents = 0
    for status, count, amount in rows:
        by_status[status] = count
        total_orders += count
        if status not in (STATUS_CANCELLED, STATUS_RETURNED):
            total_cents += amount or 0

    recent = (
        apply_scope(db.session.query(Order), caller)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(5)
        .all()
    )
    return {
        "total_orders": total_orders,
        "total_spent": format_cents(total_cents),
        "total_spent_cents": total_cents,
        "by_status": by_status,
        "recent_orders": [o.to_dict() for o in recent],
    }


def agent_history(caller: Caller, filters: dict | None = None) -> dict:
    """Completed work for an agent: delivered, cancelled and returned orders."""
    if caller.role != ROLE_AGENT:
        raise ForbiddenError("Only delivery agents have a delivery history")
    filters = filters or {}

    status = filters.get("status") or None
    if status is not None and status not in AGENT_HISTORY_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(AGENT_HISTORY_STATUSES)}")
    statuses = [status] if status else list(AGENT_HISTORY_STATUSES)

    query = apply_scope(db.session.query(Order), caller).filter(Order.status.in_(statuses))
    page, limit = pagination_params(filters)
    return _paginate(query, page, limit)


def agent_stats(caller: Caller, *, now: datetime | None = None) -> dict:
    if caller.role != ROLE_AGENT:
        raise ForbiddenError("Only delivery agents have delivery stats")
    now = now or utcnow()
    day_start, day_end = day_window(now)

    scoped = apply_scope(db.session.query(Order.status, func.count(Order.id)), caller)
    counts = dict(scoped.group_by(Order.status).all())

    delivered_today = (
        apply_scope(db.session.query(func.count(Order.id)), caller)
        .filter(
            Order.status == STATUS_DELIVERED,
            Order.delivered_at >= day_start,
            Order.delivered_at < day_end,
        )
        .scalar()
    )
    delivered_cents = (
        apply_scope(db.session.query(func.coalesce(func.sum(Order.total_amount_cents), 0)), caller)
        .filter(Order.status == STATUS_DELIVERED)
        .scalar()
    )

    return {
        "active": sum(counts.get(s, 0) for s in AGENT_ACTIVE_STATUSES),
        "assigned": counts.get(AGENT_ACTIVE_STATUSES[0], 0),
        "out_for_delivery": counts.get(AGENT_ACTIVE_STATUSES[1], 0),
        "delivered": counts.get(STATUS_DELIVERED, 0),
        "cancelled": counts.get(STATUS_CANCELLED, 0),
        "returned": counts.get(STATUS_RETURNED, 0),
        "delivered_today": delivered_today or 0,
        "delivered_amount": format_cents(delivered_cents or 0),
    }
