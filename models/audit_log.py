from datetime import datetime
from models.db import db

class AuditLog(db.Model):
    """Append-only trail of booking and payment events, written by utils.audit.log_event."""
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # gateway callbacks and sweeps have no user
    action = db.Column(db.String(80), nullable=False, index=True)  # BOOKING_CONFIRMED, PAYMENT_ORDER_CREATED, ...
    entity = db.Column(db.String(80), nullable=True)  # booking, payment_order
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "created_at": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "ip": self.ip,
            "metadata": self.metadata_json,
        }
