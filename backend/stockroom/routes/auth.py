# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..decorators import require_auth
from ..services import auth_service
from ..time_utils import to_utc_z

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """Exchange email/password for a bearer token."""
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")
    if not email or not password:
        return {"success": False, "message": "Email and password are required"}, 400

    user = auth_service.authenticate(email, password)
    if user is None:
        return {"success": False, "message": "Invalid credentials"}, 401

    session, token = auth_service.create_session(user.id)
    return {
        "success": True,
        "message": "Login successful",
        "data": {
            "token": token,
            "expiresAt": to_utc_z(session.expires_at),
            "user": user.to_dict(),
            "permissions": sorted(auth_service.user_permissions(user)),
        },
    }


@auth_bp.post("/logout")
@require_auth
def logout_route():
    auth_service.revoke_session(g.token)
    return {"success": True, "message": "Logged out"}


@auth_bp.get("/me")
@require_auth
def me_route():
    return {
        "success": True,
        "data": {
            "user": g.current_user.to_dict(),
            "permissions": sorted(g.permissions),
        },
    }
