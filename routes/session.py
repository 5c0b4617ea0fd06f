"""
Dummy login handling.
Stands in for the real identity provider: picks a seeded user and keeps
their id and role in the Flask session.
"""

from functools import wraps

from flask import Blueprint, jsonify, request, session

from errors import NotAuthorized, ValidationFailed
from services.approval import get_user

session_bp = Blueprint("session", __name__)


def login_as(user_id):
    user = get_user(user_id)
    if user is None:
        raise ValidationFailed(f"Unknown user {user_id}")
    session["user_id"] = user.id
    session["role"] = user.role
    return user


def current_user():
    uid = session.get("user_id")
    if not uid:
        return None
    return get_user(uid)


def require_role(*roles):
    """Route guard: the logged-in user must hold one of the roles."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                raise NotAuthorized("Login required")
            if roles and user.role not in roles:
                raise NotAuthorized(f"Role {user.role} cannot access this resource")
            return view(user, *args, **kwargs)
        return wrapped
    return decorator


# --- POST /session ------------------------------------------------------
# Body: { user_id }
@session_bp.route("/session", methods=["POST"])
def select_user():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if not isinstance(user_id, int):
        raise ValidationFailed("user_id must be an integer")
    user = login_as(user_id)
    return jsonify({"success": True, "user": user.to_dict()}), 200


@session_bp.route("/session", methods=["DELETE"])
def logout():
    session.clear()
    return jsonify({"success": True}), 200
