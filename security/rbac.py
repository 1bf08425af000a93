"""
Who is calling, and what they may do.

The session cookie is resolved once per request into g.user. Roles are flat:
CLIENT books and pays, STAFF runs the floor, ADMIN passes every check.
"""
from functools import wraps
from flask import g, jsonify

from models import db
from models.user import Role, User
from security.session import get_session_from_request

CLIENT = "CLIENT"
STAFF = "STAFF"
ADMIN = "ADMIN"
ROLES = (CLIENT, STAFF, ADMIN)


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    db.session.add_all(Role(name=name) for name in ROLES if name not in existing)
    db.session.commit()


def load_current_user():
    sess = get_session_from_request()
    g.session = sess
    g.user = db.session.get(User, sess.user_id) if sess else None


def is_staff() -> bool:
    user = getattr(g, "user", None)
    return user is not None and user.has_role(STAFF, ADMIN)


def require_roles(*role_names: str):
    """
    Usage: @require_roles(STAFF)
    With no names it only requires a signed-in user.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401
            if role_names and not user.has_role(ADMIN, *role_names):
                return jsonify(error="Forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator


login_required = require_roles()
