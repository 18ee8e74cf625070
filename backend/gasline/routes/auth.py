# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Customers and delivery agents: request-otp, then verify-otp
- Admins and agency owners: password login
- Everyone: logout revokes the bearer token
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import ServiceError
from ..models.auth import ROLE_CUSTOMER
from ..services import auth_service, email_service, otp_service, session_service
from ..validation import normalize_email, require_json_object, validate_otp_code
from gasline.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_response(user, message: str):
    _, token = session_service.create_session(
        user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return jsonify({
        "success": True,
        "message": message,
        "data": {"token": token, "user": user.to_dict()},
    }), 200


@auth_bp.post("/request-otp")
def request_otp_route():
    """Request body: {"email": "...", "role": "customer" | "agent"}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        email = normalize_email(data.get("email"))
        role = data.get("role") or ROLE_CUSTOMER

        record = otp_service.issue_login_otp(email, role)
        try:
            email_service.send_login_otp(email, record.code, to_utc_z(record.expires_at))
        except Exception:
            current_app.logger.exception("Failed to send login OTP email to %s", email)

        return jsonify({
            "success": True,
            "message": "OTP sent to your email",
            "data": {"email": email, "role": role, "expires_at": to_utc_z(record.expires_at)},
        }), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to issue login OTP")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.post("/verify-otp")
def verify_otp_route():
    """Request body: {"email": "...", "role": "customer" | "agent", "otp": "123456"}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        email = normalize_email(data.get("email"))
        role = data.get("role") or ROLE_CUSTOMER
        code = validate_otp_code(data.get("otp"))

        user = otp_service.verify_login_otp(email, role, code)
        return _session_response(user, "Login successful")
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify login OTP")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """Staff password login. Request body: {"email": "...", "password": "..."}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"success": False, "message": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            current_app.logger.info("Failed staff login for %s", email)
            return jsonify({"success": False, "message": "Invalid credentials"}), 401

        return _session_response(user, "Login successful")
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to log in")
        return jsonify({"success": False, "message": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.token)
    return jsonify({"success": True, "message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"success": True, "message": "OK", "data": g.current_user.to_dict()}), 200
