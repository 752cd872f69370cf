# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import session_service


def _is_authenticated() -> bool:
    return getattr(g, 'current_user', None) is not None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user to the authenticated User.

    Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the authenticated user to hold one of the given roles.

    Must be stacked under @require_auth.
    """
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if user.role not in allowed:
                current_app.logger.warning(
                    "Role denied: user=%s role=%s path=%s required=%s",
                    user.id, user.role, request.path, sorted(allowed),
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
