# Overview: Flask API routes for login, logout and the current session.

"""
Authentication API routes

Bearer tokens come from POST /api/auth/login and go in the Authorization
header of every other request. Self-registration does not exist; accounts are
created with the `flask users create` command.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import organization_service
from ..services import session_service
from ..decorators import bearer_token, require_auth
from lockstock.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body: {"username": "...", "password": "..."} (email accepted as username)
    Returns: {data: {token, expires_at, user}}
    """
    try:
        data = request.get_json(silent=True) or {}
        identifier = data.get("username") or data.get("email")
        password = data.get("password")

        if not identifier or not password:
            return jsonify({"error": "username and password are required", "details": None}), 400

        user = auth_service.authenticate(identifier, password)
        if user is None:
            return jsonify({"error": "Invalid credentials", "details": None}), 401

        session, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "data": {
                "token": token,
                "expires_at": to_utc_z(session.expires_at),
                "user": user.to_dict(),
            }
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error", "details": None}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(bearer_token())
        return jsonify({"data": {"message": "Logout successful"}}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error", "details": None}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user plus every organization they belong to, with role."""
    user = g.current_user
    return jsonify({
        "data": {
            "user": user.to_dict(),
            "organizations": organization_service.list_user_organizations(user.id),
            "session_expires_at": to_utc_z(g.session_context.session.expires_at),
        }
    }), 200
