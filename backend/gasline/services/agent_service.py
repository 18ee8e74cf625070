# Overview: Delivery agent roster queries and online/offline status, scoped to the caller's agency.

"""
Delivery Agents

Who sees which agents:
- admin: every agent, optionally narrowed with agency_id
- agency_owner: agents of their own agency only
- everyone else: nothing

Who may set an agent online or offline:
- admin and the system caller: any agent
- agency_owner: agents of their own agency
- agent: only themselves

Assignment (order_service.assign_agent) does not look at this status; it
is the roster the agency dispatches from.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..errors import ConfigurationError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DeliveryAgent
from ..models.agencies import AGENT_STATUSES
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER, ROLE_AGENT
from ..validation import coerce_int
from .concurrency import lock_for_update, run_with_retry
from .order_query_service import pagination_params
from .visibility_service import ROLE_SYSTEM, Caller


def _validate_status(status) -> str:
    if status not in AGENT_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(AGENT_STATUSES)}",
            {"allowed": list(AGENT_STATUSES)},
        )
    return status


def list_agents(caller: Caller, filters: dict | None = None) -> dict:
    """
    Agents visible to caller, newest first.

    filters: agency_id (admin only), status, search (name, email, phone,
    vehicle number), id, page, limit.

    Returns {"agents": [DeliveryAgent, ...], "pagination": {...}}.
    """
    filters = filters or {}
    query = db.session.query(DeliveryAgent)

    if caller.role == ROLE_AGENCY_OWNER:
        if caller.agency_id is None:
            raise ConfigurationError("Agency ID not found in token")
        query = query.filter(DeliveryAgent.agency_id == caller.agency_id)
    elif caller.role == ROLE_ADMIN:
        agency_id = filters.get("agency_id")
        if agency_id not in (None, ""):
            query = query.filter(DeliveryAgent.agency_id == coerce_int(agency_id, "agency_id", minimum=1))
    else:
        raise ForbiddenError("Only admins and agencies can list delivery agents")

    status = filters.get("status")
    if status not in (None, ""):
        query = query.filter(DeliveryAgent.status == _validate_status(status))

    agent_id = filters.get("id")
    if agent_id not in (None, ""):
        query = query.filter(DeliveryAgent.id == coerce_int(agent_id, "id", minimum=1))

    search = (filters.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            DeliveryAgent.name.ilike(pattern),
            DeliveryAgent.email.ilike(pattern),
            DeliveryAgent.phone.ilike(pattern),
            DeliveryAgent.vehicle_number.ilike(pattern),
        ))

    page, limit = pagination_params(filters)
    total = query.order_by(None).count()
    agents = (
        query.order_by(DeliveryAgent.created_at.desc(), DeliveryAgent.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "agents": agents,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if total else 0,
        },
    }


def _require_status_access(caller: Caller, agent: DeliveryAgent) -> None:
    if caller.role in (ROLE_ADMIN, ROLE_SYSTEM):
        return
    if caller.role == ROLE_AGENCY_OWNER and caller.agency_id is not None and caller.agency_id == agent.agency_id:
        return
    if caller.role == ROLE_AGENT and caller.delivery_agent_id == agent.id:
        return
    raise ForbiddenError("You cannot change this agent's status")


def update_agent_status(agent_id: int, status: str, caller: Caller) -> DeliveryAgent:
    """
    Set an agent online or offline.

    Raises ValidationError (unknown status), NotFoundError (no such agent)
    or ForbiddenError (outside the caller's reach).
    """
    status = _validate_status(status)

    def _op() -> DeliveryAgent:
        agent = lock_for_update(db.session.query(DeliveryAgent).filter_by(id=agent_id)).first()
        if agent is None:
            raise NotFoundError("Delivery agent not found")
        _require_status_access(caller, agent)
        agent.status = status
        db.session.commit()
        return agent

    agent = run_with_retry(_op)
    current_app.logger.info(
        "Delivery agent %s (%s) set %s by %s (%s)",
        agent.id, agent.email, status, caller.role, caller.id,
    )
    return agent
