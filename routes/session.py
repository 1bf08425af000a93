from flask import Blueprint, jsonify, g

from security.csrf import CSRF_COOKIE, issue_csrf_token
from security.rbac import login_required
from security.session import cookie_name, revoke_current_session
from utils.audit import log_event

session_bp = Blueprint("session", __name__, url_prefix="/session")


@session_bp.get("/me")
@login_required
def me():
    """Who the session cookie resolves to; also (re)issues the CSRF cookie."""
    resp = jsonify(
        id=g.user.id,
        email=g.user.email,
        fullName=g.user.full_name,
        roles=sorted(r.name for r in g.user.roles),
    )
    return issue_csrf_token(resp), 200


@session_bp.post("/logout")
@login_required
def logout():
    revoke_current_session()
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name(), path="/")
    resp.delete_cookie(CSRF_COOKIE, path="/")
    return resp, 200
