"""
Opaque session tokens.

The raw token only lives in the client's cookie; the sessions table keeps
its SHA-256 digest. Tokens are normally minted by the identity service; the
CLI and the tests call create_session directly.
"""
import hashlib
import secrets
from datetime import datetime, timedelta

from flask import current_app, has_request_context, request

from models import db
from models.session import Session


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def cookie_name() -> str:
    return current_app.config.get("AUTH_COOKIE_NAME", "looklab_session")


def create_session(user_id: int) -> str:
    """Store a session for user_id and return the raw token to put in the cookie."""
    token = secrets.token_urlsafe(32)
    now = datetime.utcnow()
    lifetime = timedelta(seconds=current_app.config.get("SESSION_LIFETIME_SECONDS", 28800))

    row = Session(user_id=user_id, token_hash=_digest(token), created_at=now, expires_at=now + lifetime)
    if has_request_context():
        row.ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        row.user_agent = (request.headers.get("User-Agent") or "")[:255] or None

    db.session.add(row)
    db.session.commit()
    return token


def get_session_from_request():
    token = request.cookies.get(cookie_name())
    if not token:
        return None

    sess = Session.query.filter_by(token_hash=_digest(token), revoked=False).first()
    now = datetime.utcnow()
    idle = timedelta(seconds=current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200))
    if sess is None or not sess.is_live(now, idle):
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess


def revoke_current_session() -> bool:
    token = request.cookies.get(cookie_name())
    if not token:
        return False
    revoked = (
        Session.query
        .filter_by(token_hash=_digest(token), revoked=False)
        .update({"revoked": True}, synchronize_session=False)
    )
    db.session.commit()
    return revoked == 1
