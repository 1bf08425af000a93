from datetime import datetime
from models.db import db

class Session(db.Model):
    """Server side of the looklab_session cookie; only the token digest is stored."""
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(128), unique=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, default=False, nullable=False)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    def is_live(self, now: datetime, idle) -> bool:
        """Not revoked, not past expires_at, and seen within the idle window."""
        if self.revoked or self.expires_at <= now:
            return False
        return (self.last_seen_at or self.created_at) + idle > now
