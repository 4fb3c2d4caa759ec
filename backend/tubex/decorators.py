# Overview: Request authentication and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User
from .services.actor import Actor


def require_auth(f):
    """
    Resolve the acting user for the request.

    Authentication itself happens upstream; the gateway forwards the user id
    in the X-User-Id header. Sets:
    - g.current_user: the User row
    - g.actor: the Actor value handed to services

    Returns 401 if the header is missing, malformed, or names an unknown or
    inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = request.headers.get("X-User-Id", "").strip()
        if not raw_user_id:
            return jsonify({"success": False, "error": "Authentication required"}), 401
        if not raw_user_id.isdigit():
            return jsonify({"success": False, "error": "Invalid user id"}), 401

        user = db.session.get(User, int(raw_user_id))
        if not user or not user.is_active:
            return jsonify({"success": False, "error": "Invalid or inactive user"}), 401

        g.current_user = user
        g.actor = Actor.from_user(user)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the admin role. Must be applied after @require_auth.

    Returns 403 for any other role.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_user"):
            return jsonify({"success": False, "error": "Authentication required"}), 401
        if not g.current_user.is_admin:
            return jsonify({"success": False, "error": "Administrator access required"}), 403
        return f(*args, **kwargs)

    return decorated_function
