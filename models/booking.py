from datetime import datetime
from models.db import db

# status values as persisted and reported to clients
SCHEDULED = "Scheduled"  # advance order open, no slot held
CONFIRMED = "Confirmed"
SERVICE_DONE = "Service Done"
COMPLETED = "Completed"
CANCELLED = "Cancelled"
EXPIRED = "Expired"

# statuses that count against slot capacity
ACTIVE_STATUSES = (CONFIRMED, SERVICE_DONE, COMPLETED)

# forward-only lifecycle; anything not listed here is rejected
TRANSITIONS = {
    SCHEDULED: (CONFIRMED, CANCELLED, EXPIRED),
    CONFIRMED: (SERVICE_DONE, CANCELLED),
    SERVICE_DONE: (COMPLETED,),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    date = db.Column(db.Date, nullable=False, index=True)
    time_label = db.Column(db.String(20), nullable=False)

    # smallest currency unit; balance is always total - advance
    total_amount = db.Column(db.Integer, nullable=False)
    advance_amount = db.Column(db.Integer, nullable=False)
    balance_amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="INR")

    status = db.Column(db.String(20), nullable=False, default=CONFIRMED)

    advance_order_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    advance_payment_id = db.Column(db.String(64), nullable=True)
    balance_order_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    balance_payment_id = db.Column(db.String(64), nullable=True)

    # optional annotation handed over by the styling pipeline
    style_note = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    service_done_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    service = db.relationship("Service")

    __table_args__ = (
        db.Index("ix_bookings_slot", "date", "time_label"),
        db.CheckConstraint("advance_amount >= 0", name="ck_bookings_advance_non_negative"),
        db.CheckConstraint("balance_amount >= 0", name="ck_bookings_balance_non_negative"),
        db.CheckConstraint("balance_amount = total_amount - advance_amount", name="ck_bookings_balance_split"),
    )

    @property
    def paid_amount(self) -> int:
        if self.status == COMPLETED:
            return self.total_amount
        return self.advance_amount

    @property
    def due_amount(self) -> int:
        return self.total_amount - self.paid_amount

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "serviceId": self.service_id,
            "service": self.service.name if self.service else None,
            "date": self.date.isoformat(),
            "time": self.time_label,
            "status": self.status,
            "totalAmount": self.total_amount,
            "advanceAmount": self.advance_amount,
            "balanceAmount": self.balance_amount,
            "paidAmount": self.paid_amount,
            "dueAmount": self.due_amount,
            "currency": self.currency,
            "styleNote": self.style_note,
            "createdAt": self.created_at.isoformat(),
            "serviceDoneAt": self.service_done_at.isoformat() if self.service_done_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "cancelledAt": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }
