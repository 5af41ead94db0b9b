# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import auth_service


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "permissions")


def require_auth(f):
    """
    Require a valid bearer token.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.permissions: the user's permission codes
    - g.session_context: the full SessionContext
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"success": False, "message": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        context = auth_service.validate_session(token)
        if not context:
            return jsonify({"success": False, "message": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.permissions = context.permissions
        g.session_context = context
        g.token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require one "{resource}.{action}" permission. Use below @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"success": False, "message": "Authentication required"}), 401
            if permission_code not in g.permissions:
                return jsonify({
                    "success": False,
                    "message": f"Permission denied: requires {permission_code}",
                    "requiredPermission": permission_code,
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def current_user_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user is not None else None
