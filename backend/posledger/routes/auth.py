# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/posledger/routes/auth.py
"""
Authentication API routes

Users are created by an administrator through the CLI (`flask users create`);
there is no self-registration. Login returns a bearer token that every other
/api route expects in the Authorization header.
"""

from flask import Blueprint, jsonify, g

from ..errors import LedgerError, ValidationError
from ..services import auth_service, permission_service
from ..decorators import require_auth, error_response, internal_error_response, json_body
from posledger.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body: {"username": "...", "password": "..."}

    Returns:
        200: {"success": true, "token": "...", "user": {...}, "expires_at": "..."}
        400: missing fields
        401: invalid credentials
    """
    try:
        data = json_body()
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return error_response(ValidationError("username and password required"))

        session, token = auth_service.authenticate(username, password)

        return jsonify({
            "success": True,
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "user": session.user.to_dict(),
        }), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Login failed")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        auth_service.revoke_session(g.session_token)
        return jsonify({"success": True}), 200
    except Exception:
        return internal_error_response("Logout failed")


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user plus the capabilities their role grants."""
    user = g.current_user
    capabilities = sorted(
        f"{module}.{action}" for module, action in permission_service.get_user_capabilities(user)
    )
    return jsonify({"success": True, "user": user.to_dict(), "capabilities": capabilities}), 200
