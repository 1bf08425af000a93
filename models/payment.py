from datetime import datetime
from models.db import db

ADVANCE = "ADVANCE"
BALANCE = "BALANCE"

# order status values: PENDING, PAID, CANCELLED, EXPIRED
PENDING = "PENDING"
PAID = "PAID"
CANCELLED = "CANCELLED"
EXPIRED = "EXPIRED"


class PaymentOrder(db.Model):
    __tablename__ = "payment_orders"

    id = db.Column(db.Integer, primary_key=True)

    # gateway-issued order id (Razorpay order / Stripe PaymentIntent)
    order_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    kind = db.Column(db.String(10), nullable=False)  # ADVANCE, BALANCE
    provider = db.Column(db.String(20), nullable=False, default="RAZORPAY")

    amount = db.Column(db.Integer, nullable=False)   # smallest unit, what the gateway charges
    total_amount = db.Column(db.Integer, nullable=False)  # full service price at order time
    currency = db.Column(db.String(10), nullable=False, default="INR")
    status = db.Column(db.String(20), nullable=False, default=PENDING)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    time_label = db.Column(db.String(20), nullable=False)
    style_note = db.Column(db.Text, nullable=True)

    # set for balance orders only
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    payment_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index("ix_payment_orders_status_expiry", "status", "expires_at"),
    )
