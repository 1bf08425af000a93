"""
Durable record of bookings and the payment orders that feed them.

Status changes go through transition(), a compare-and-set on the current
status, so two callers racing on the same booking cannot both apply a
transition. None of these helpers commit; the orchestrator owns the
transaction boundary.
"""
from datetime import datetime

from sqlalchemy import func, update

from models import db
from models.booking import Booking, ACTIVE_STATUSES, COMPLETED, CONFIRMED, can_transition
from models.payment import PaymentOrder, PENDING, EXPIRED
from services.errors import InvalidTransitionError, NotFoundError


class BookingLedger:
    # ---------- lookups ----------
    def get(self, booking_id: int) -> Booking:
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    def find_by_advance_order(self, order_id: str):
        return Booking.query.filter_by(advance_order_id=order_id).first()

    def find_by_balance_order(self, order_id: str):
        return Booking.query.filter_by(balance_order_id=order_id).first()

    def get_order(self, order_id: str, kind: str = None) -> PaymentOrder:
        q = PaymentOrder.query.filter_by(order_id=order_id)
        if kind:
            q = q.filter_by(kind=kind)
        order = q.first()
        if order is None:
            raise NotFoundError("Payment order not found")
        return order

    def count_active(self, day, time_label: str) -> int:
        return (
            Booking.query
            .filter(Booking.date == day, Booking.time_label == time_label, Booking.status.in_(ACTIVE_STATUSES))
            .count()
        )

    def for_user(self, user_id: int, status: str = None):
        q = Booking.query.filter_by(user_id=user_id)
        if status:
            q = q.filter_by(status=status)
        return q.order_by(Booking.created_at.desc()).all()

    def search(self, status: str = None, day=None, limit: int = 200):
        q = Booking.query
        if status:
            q = q.filter(Booking.status == status)
        if day:
            q = q.filter(Booking.date == day)
        return q.order_by(Booking.date.desc(), Booking.created_at.desc()).limit(limit).all()

    # ---------- writes ----------
    def add_order(self, **fields) -> PaymentOrder:
        order = PaymentOrder(**fields)
        db.session.add(order)
        return order

    def add_confirmed(self, order: PaymentOrder, payment_id: str, total_amount: int, advance_amount: int) -> Booking:
        booking = Booking(
            user_id=order.user_id,
            service_id=order.service_id,
            date=order.date,
            time_label=order.time_label,
            total_amount=total_amount,
            advance_amount=advance_amount,
            balance_amount=total_amount - advance_amount,
            currency=order.currency,
            status=CONFIRMED,
            advance_order_id=order.order_id,
            advance_payment_id=payment_id,
            style_note=order.style_note,
        )
        db.session.add(booking)
        db.session.flush()
        return booking

    def transition(self, booking: Booking, target: str, **fields) -> Booking:
        """Move booking to target if its stored status still allows it."""
        current = booking.status
        if not can_transition(current, target):
            raise InvalidTransitionError(f"Cannot move booking from {current} to {target}")

        values = dict(fields)
        values["status"] = target
        result = db.session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(f"Booking {booking.id} changed concurrently")
        db.session.refresh(booking)
        return booking

    def settle_order(self, order_id: str, from_status: str, to_status: str, payment_id: str = None) -> bool:
        """Compare-and-set on the order status; False if someone else moved it first."""
        values = {"status": to_status}
        if payment_id:
            values["payment_id"] = payment_id
            values["paid_at"] = datetime.utcnow()
        result = db.session.execute(
            update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id, PaymentOrder.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def expire_orders(self, kind: str, now: datetime) -> int:
        result = db.session.execute(
            update(PaymentOrder)
            .where(
                PaymentOrder.kind == kind,
                PaymentOrder.status == PENDING,
                PaymentOrder.expires_at.isnot(None),
                PaymentOrder.expires_at < now,
            )
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ---------- reporting ----------
    def totals(self):
        """Revenue collected and balance still due, over non-cancelled bookings."""
        live = Booking.query.filter(Booking.status.in_(ACTIVE_STATUSES))
        bookings = live.count()
        advance_sum = live.with_entities(func.coalesce(func.sum(Booking.advance_amount), 0)).scalar()
        completed_balance = (
            live.filter(Booking.status == COMPLETED)
            .with_entities(func.coalesce(func.sum(Booking.balance_amount), 0))
            .scalar()
        )
        open_balance = (
            live.filter(Booking.status != COMPLETED)
            .with_entities(func.coalesce(func.sum(Booking.balance_amount), 0))
            .scalar()
        )
        return {
            "bookings": bookings,
            "revenue": int(advance_sum) + int(completed_balance),
            "dueAtSalon": int(open_balance),
        }
