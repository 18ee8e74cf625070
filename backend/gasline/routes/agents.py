# Overview: Flask API routes for the delivery agent roster and agent online/offline status.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_roles
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN, ROLE_AGENCY_OWNER
from ..services import agent_service
from ..validation import require_json_object


agents_bp = Blueprint("agents", __name__, url_prefix="/api/agents")


@agents_bp.get("/")
@require_auth
@require_roles(ROLE_ADMIN, ROLE_AGENCY_OWNER)
def list_agents_route():
    """
    List delivery agents. Agency owners only see their own agency.

    Query params: agency_id (admin), status, search, id, page, limit.
    """
    try:
        result = agent_service.list_agents(g.caller, request.args.to_dict())
        return jsonify({
            "success": True,
            "message": "Delivery agents retrieved successfully",
            "data": {
                "agents": [a.to_dict() for a in result["agents"]],
                "pagination": result["pagination"],
            },
        }), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list delivery agents")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@agents_bp.put("/<int:agent_id>/status")
@require_auth
def update_agent_status_route(agent_id: int):
    """
    Request body: {"status": "online" | "offline"}

    Admins, the agent's agency owner and the agent themselves.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        agent = agent_service.update_agent_status(agent_id, data.get("status"), g.caller)
        return jsonify({
            "success": True,
            "message": "Agent status updated successfully",
            "data": agent.to_dict(),
        }), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update status of agent %s", agent_id)
        return jsonify({"success": False, "message": "Internal server error"}), 500
