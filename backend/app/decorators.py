# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import user_service

# Identity is established upstream (auth gateway); this service trusts the header.
USER_HEADER = "X-User-Id"


def _resolve_caller():
    raw = request.headers.get(USER_HEADER, "").strip()
    if not raw.isdigit():
        return None
    return user_service.get_user(int(raw))


def require_user(f):
    """
    Require a known caller.

    Sets g.current_user to the User named by the X-User-Id header.
    Returns 401 when the header is missing, malformed or names no user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _resolve_caller()
        if user is None:
            return jsonify({"error": "Authentication required"}), 401
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def optional_user(f):
    """Like require_user, but anonymous callers get g.current_user = None."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = _resolve_caller()
        return f(*args, **kwargs)

    return decorated_function
