# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'caller')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.caller: visibility_service.Caller built from the user
    - g.session_context: The full SessionContext object
    - g.token: The plaintext bearer token (for logout)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"success": False, "message": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"success": False, "message": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.caller = context.caller
        g.session_context = context
        g.token = token

        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles):
    """Require the authenticated caller to hold one of `roles`. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"success": False, "message": "Authentication required"}), 401

            if g.caller.role not in roles:
                return jsonify({
                    "success": False,
                    "message": "Access denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
