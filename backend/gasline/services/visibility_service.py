# Overview: Role-scoped order visibility; the single rule table behind every order read.

"""
Order Visibility Filter

Every list and detail read of orders goes through order_scope() or
can_access(). Both evaluate the same ROLE_SCOPES table:

    customer      -> orders.customer_email     == caller.email
    agent         -> orders.assigned_agent_id  == caller.delivery_agent_id
    agency_owner  -> orders.agency_id          == caller.agency_id
    admin, system -> unrestricted

A caller whose role needs a link it does not have (an agent with no
delivery_agent_id, an owner with no agency_id) is a ConfigurationError.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ConfigurationError, ForbiddenError
from ..models import Order
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_AGENT, ROLE_CUSTOMER

ROLE_SYSTEM = "system"


@dataclass(frozen=True)
class Caller:
    """Resolved identity of whoever invokes an order operation."""
    id: int | None
    email: str | None
    role: str
    name: str | None = None
    agency_id: int | None = None
    delivery_agent_id: int | None = None

    @classmethod
    def system(cls, name: str = "system") -> "Caller":
        return cls(id=None, email=None, role=ROLE_SYSTEM, name=name)

    @classmethod
    def from_user(cls, user) -> "Caller":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            name=user.name or user.email,
            agency_id=user.agency_id,
            delivery_agent_id=user.delivery_agent_id,
        )

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.role


# role -> (Order column name, Caller attribute); None means unrestricted
ROLE_SCOPES: dict[str, tuple[str, str] | None] = {
    ROLE_CUSTOMER: ("customer_email", "email"),
    ROLE_AGENT: ("assigned_agent_id", "delivery_agent_id"),
    ROLE_AGENCY_OWNER: ("agency_id", "agency_id"),
    ROLE_ADMIN: None,
    ROLE_SYSTEM: None,
}

_MISSING_LINK_MESSAGES = {
    ROLE_CUSTOMER: "Customer email is required",
    ROLE_AGENT: "Agent ID not found in token",
    ROLE_AGENCY_OWNER: "Agency ID not found in token",
}

_FORBIDDEN_MESSAGES = {
    ROLE_CUSTOMER: "You can only access your own orders",
    ROLE_AGENT: "This order is not assigned to you",
    ROLE_AGENCY_OWNER: "This order does not belong to your agency",
}


def _scope_for(caller: Caller):
    if caller.role not in ROLE_SCOPES:
        raise ForbiddenError(f"Role '{caller.role}' cannot access orders")
    scope = ROLE_SCOPES[caller.role]
    if scope is None:
        return None
    column, attr = scope
    value = getattr(caller, attr)
    if value is None or value == "":
        raise ConfigurationError(_MISSING_LINK_MESSAGES[caller.role])
    return column, value


def order_scope(caller: Caller):
    """
    SQL predicate limiting Order rows to what the caller may see.

    Returns None for unrestricted roles.
    """
    scope = _scope_for(caller)
    if scope is None:
        return None
    column, value = scope
    return getattr(Order, column) == value


def apply_scope(query, caller: Caller):
    clause = order_scope(caller)
    return query if clause is None else query.filter(clause)


def can_access(caller: Caller, order: Order) -> bool:
    scope = _scope_for(caller)
    if scope is None:
        return True
    column, value = scope
    return getattr(order, column) == value


def require_access(caller: Caller, order: Order) -> None:
    if not can_access(caller, order):
        raise ForbiddenError(_FORBIDDEN_MESSAGES.get(caller.role, "Access denied"))
