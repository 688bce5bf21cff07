# Overview: Request identity and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User


IDENTITY_HEADER = "X-User-Id"


def require_auth(f):
    """
    Resolve the caller established by the upstream gateway.

    Sets g.current_user to the active User named by the X-User-Id header.

    SECURITY: Returns 401 if:
    - No X-User-Id header, or it is not an integer
    - Unknown user
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(IDENTITY_HEADER, "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        if not raw.isdigit():
            return jsonify({"error": "Invalid user identity"}), 401

        user = db.session.query(User).filter_by(id=int(raw)).first()
        if not user or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of the given roles; must be applied after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401

            if user.role not in roles:
                current_app.logger.warning(
                    "Role check failed: user %s (%s) on %s %s requires %s",
                    user.id, user.role, request.method, request.path, "/".join(roles),
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_role": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
