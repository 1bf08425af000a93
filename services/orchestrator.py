"""
Booking lifecycle: PendingAdvance -> Confirmed -> Service Done -> Completed,
with Cancelled/Expired branching off the first two states.

The advance phase lives on a PENDING PaymentOrder; a Booking row is only
written by confirm_advance, in the same transaction that takes the slot.
Gateway callbacks may arrive more than once, so both confirm_* operations
are idempotent on order id: a replay returns the booking created by the
first delivery.
"""
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import CANCELLED, COMPLETED, CONFIRMED, SCHEDULED, SERVICE_DONE
from models.payment import ADVANCE, BALANCE, CANCELLED as ORDER_CANCELLED, PAID, PENDING
from models.service import Service
from services.errors import (
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
    NothingDueError,
    PaymentVerificationError,
    ValidationError,
)
from services.payment_gateway import get_gateway
from utils.audit import log_event

logger = logging.getLogger(__name__)


def split_amount(total: int, ratio: float):
    """Return (advance, balance) for a total in minor units, advance rounded half up."""
    advance = int((Decimal(total) * Decimal(str(ratio))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    advance = min(max(advance, 0), total)
    return advance, total - advance


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat((value or "").strip())
    except (TypeError, ValueError):
        raise ValidationError("Invalid date. Use YYYY-MM-DD")


def slot_start(day: date, time_label: str) -> datetime:
    try:
        start = datetime.strptime(time_label, "%I:%M %p").time()
    except ValueError:
        start = time.min
    return datetime.combine(day, start)


class BookingOrchestrator:
    def __init__(self, allocator, ledger, gateway=None, advance_ratio=0.8, currency="INR",
                 order_ttl_seconds=900, cancel_cutoff_hours=12):
        self.allocator = allocator
        self.ledger = ledger
        self._gateway = gateway
        self.advance_ratio = advance_ratio
        self.currency = currency
        self.order_ttl_seconds = order_ttl_seconds
        self.cancel_cutoff_hours = cancel_cutoff_hours

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = get_gateway()
        return self._gateway

    def _get_service(self, service_id) -> Service:
        try:
            service_id = int(service_id)
        except (TypeError, ValueError):
            raise ValidationError("serviceId must be an integer")
        service = db.session.get(Service, service_id)
        if service is None or not service.is_active:
            raise NotFoundError("Service not found")
        return service

    # ---------- advance phase ----------
    def initiate(self, user_id: int, service_id, day, time_label: str, style_note: str = None):
        """Open a gateway order for the advance. Takes no slot and writes no booking."""
        service = self._get_service(service_id)
        day = parse_date(day)
        label = self.allocator.validate_label(time_label)

        if slot_start(day, label) <= datetime.now():
            raise ValidationError("Cannot book past/started slots")

        # advisory only; the authoritative check is try_reserve at confirmation
        if self.allocator.is_full(day, label):
            raise CapacityExceededError(f"Slot {label} on {day.isoformat()} is full")

        advance, _ = split_amount(service.price, self.advance_ratio)
        gw_order = self.gateway.create_order(
            advance,
            self.currency,
            receipt=f"adv-{user_id}-{day:%Y%m%d}",
            notes={"kind": ADVANCE, "user_id": user_id, "service_id": service.id,
                   "date": day.isoformat(), "time": label},
        )

        order = self.ledger.add_order(
            order_id=gw_order.order_id,
            kind=ADVANCE,
            provider=self.gateway.provider,
            amount=gw_order.amount,
            total_amount=service.price,
            currency=gw_order.currency,
            status=PENDING,
            user_id=user_id,
            service_id=service.id,
            date=day,
            time_label=label,
            style_note=(style_note or "").strip() or None,
            expires_at=datetime.utcnow() + timedelta(seconds=self.order_ttl_seconds),
        )
        db.session.commit()

        log_event("PAYMENT_ORDER_CREATED", user_id=user_id, entity="payment_order", entity_id=order.order_id,
                  metadata={"kind": ADVANCE, "amount": order.amount, "date": day.isoformat(), "time": label})
        return order

    def _check_booking_data(self, order, booking_data):
        if not booking_data:
            return
        expected = {
            "serviceId": str(order.service_id),
            "date": order.date.isoformat(),
            "time": order.time_label,
            "userId": str(order.user_id),
        }
        for key, want in expected.items():
            got = booking_data.get(key)
            if got is None or got == "":
                continue
            if key == "date":
                got = parse_date(got).isoformat()
            if str(got).strip() != want:
                raise ValidationError(f"{key} does not match the payment order", paymentCaptured=True)

    def confirm_advance(self, order_id: str, payment_id: str, signature: str, booking_data: dict = None):
        if not self.gateway.verify_signature(order_id, payment_id, signature):
            log_event("PAYMENT_VERIFY_FAIL", entity="payment_order", entity_id=order_id, metadata={"kind": ADVANCE})
            raise PaymentVerificationError()

        existing = self.ledger.find_by_advance_order(order_id)
        if existing is not None:
            logger.info("Duplicate advance confirmation for %s", order_id)
            return existing

        order = self.ledger.get_order(order_id, kind=ADVANCE)
        if order.status != PENDING:
            # an overlapping delivery may have settled it since the replay check
            winner = self.ledger.find_by_advance_order(order_id) if order.status == PAID else None
            if winner is not None:
                return winner
            raise InvalidTransitionError(f"Advance order is {order.status}", paymentCaptured=True)
        self._check_booking_data(order, booking_data)

        day, label = order.date, order.time_label
        total, advance = order.total_amount, order.amount

        try:
            if not self.ledger.settle_order(order_id, PENDING, PAID, payment_id=payment_id):
                raise InvalidTransitionError("Advance order already settled", paymentCaptured=True)
            self.allocator.try_reserve(day, label)
            booking = self.ledger.add_confirmed(order, payment_id, total, advance)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            winner = self.ledger.find_by_advance_order(order_id)
            if winner is None:
                raise
            return winner
        except (CapacityExceededError, InvalidTransitionError) as exc:
            db.session.rollback()
            # a concurrent delivery of the same order may have won
            winner = self.ledger.find_by_advance_order(order_id)
            if winner is not None:
                return winner
            if isinstance(exc, CapacityExceededError):
                exc.payment_captured = True
                log_event("BOOKING_CAPACITY_REFUND_REQUIRED", user_id=order.user_id, entity="payment_order",
                          entity_id=order_id, metadata={"payment_id": payment_id, "amount": advance,
                                                        "date": day.isoformat(), "time": label})
                logger.warning("Advance %s captured but slot %s %s is full; refund required", order_id, day, label)
            raise

        log_event("BOOKING_CONFIRMED", user_id=booking.user_id, entity="booking", entity_id=booking.id,
                  metadata={"order_id": order_id, "payment_id": payment_id})
        return booking

    # ---------- service + balance phase ----------
    def mark_service_done(self, booking_id: int, staff_user_id: int = None):
        booking = self.ledger.get(booking_id)
        self.ledger.transition(booking, SERVICE_DONE, service_done_at=datetime.utcnow())
        db.session.commit()
        log_event("BOOKING_SERVICE_DONE", user_id=staff_user_id, entity="booking", entity_id=booking.id)
        return booking

    def request_balance(self, booking_id: int, user_id: int = None):
        booking = self.ledger.get(booking_id)
        if user_id is not None and booking.user_id != user_id:
            raise NotFoundError("Booking not found")
        if booking.status != SERVICE_DONE:
            raise InvalidTransitionError(f"Balance can only be paid once the service is done (status: {booking.status})")
        if booking.balance_amount <= 0:
            raise NothingDueError()

        gw_order = self.gateway.create_order(
            booking.balance_amount,
            booking.currency,
            receipt=f"bal-{booking.id}",
            notes={"kind": BALANCE, "booking_id": booking.id, "user_id": booking.user_id},
        )
        order = self.ledger.add_order(
            order_id=gw_order.order_id,
            kind=BALANCE,
            provider=self.gateway.provider,
            amount=gw_order.amount,
            total_amount=booking.total_amount,
            currency=gw_order.currency,
            status=PENDING,
            user_id=booking.user_id,
            service_id=booking.service_id,
            date=booking.date,
            time_label=booking.time_label,
            booking_id=booking.id,
        )
        db.session.commit()

        log_event("PAYMENT_ORDER_CREATED", user_id=booking.user_id, entity="payment_order", entity_id=order.order_id,
                  metadata={"kind": BALANCE, "amount": order.amount, "booking_id": booking.id})
        return order

    def confirm_balance(self, order_id: str, payment_id: str, signature: str):
        if not self.gateway.verify_signature(order_id, payment_id, signature):
            log_event("PAYMENT_VERIFY_FAIL", entity="payment_order", entity_id=order_id, metadata={"kind": BALANCE})
            raise PaymentVerificationError()

        existing = self.ledger.find_by_balance_order(order_id)
        if existing is not None:
            logger.info("Duplicate balance confirmation for %s", order_id)
            return existing

        order = self.ledger.get_order(order_id, kind=BALANCE)
        if order.status != PENDING:
            winner = self.ledger.find_by_balance_order(order_id) if order.status == PAID else None
            if winner is not None:
                return winner
            raise InvalidTransitionError(f"Balance order is {order.status}", paymentCaptured=True)
        booking = self.ledger.get(order.booking_id)

        try:
            if not self.ledger.settle_order(order_id, PENDING, PAID, payment_id=payment_id):
                raise InvalidTransitionError("Balance order already settled", paymentCaptured=True)
            self.ledger.transition(
                booking,
                COMPLETED,
                completed_at=datetime.utcnow(),
                balance_order_id=order_id,
                balance_payment_id=payment_id,
            )
            db.session.commit()
        except (IntegrityError, InvalidTransitionError) as exc:
            db.session.rollback()
            winner = self.ledger.find_by_balance_order(order_id)
            if winner is not None:
                return winner
            if isinstance(exc, InvalidTransitionError):
                exc.details["paymentCaptured"] = True
            raise

        log_event("BOOKING_COMPLETED", user_id=booking.user_id, entity="booking", entity_id=booking.id,
                  metadata={"order_id": order_id, "payment_id": payment_id})
        return booking

    # ---------- cancellation / expiry ----------
    def cancel(self, booking_id: int, reason: str = None, user_id: int = None, enforce_cutoff: bool = False,
               actor_id: int = None):
        booking = self.ledger.get(booking_id)
        if user_id is not None and booking.user_id != user_id:
            raise NotFoundError("Booking not found")
        if booking.status not in (SCHEDULED, CONFIRMED):
            raise InvalidTransitionError(f"Booking not cancellable (status: {booking.status})")

        if enforce_cutoff and booking.status == CONFIRMED:
            cutoff = timedelta(hours=self.cancel_cutoff_hours)
            if slot_start(booking.date, booking.time_label) - datetime.now() < cutoff:
                raise InvalidTransitionError(
                    f"Cancellation not allowed within {self.cancel_cutoff_hours} hours of start")

        held_slot = booking.status == CONFIRMED
        try:
            self.ledger.transition(booking, CANCELLED, cancelled_at=datetime.utcnow(),
                                   cancel_reason=(reason or "")[:120] or None)
            if held_slot:
                self.allocator.release(booking.date, booking.time_label)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        log_event("BOOKING_CANCEL", user_id=actor_id if actor_id is not None else user_id, entity="booking",
                  entity_id=booking.id, metadata={"reason": reason, "released": held_slot})
        return booking

    def cancel_order(self, order_id: str, user_id: int = None):
        """Abandon a pending advance (PendingAdvance -> Cancelled); nothing to release."""
        order = self.ledger.get_order(order_id, kind=ADVANCE)
        if user_id is not None and order.user_id != user_id:
            raise NotFoundError("Payment order not found")
        if order.status != PENDING or not self.ledger.settle_order(order_id, PENDING, ORDER_CANCELLED):
            raise InvalidTransitionError(f"Advance order is {order.status}")
        db.session.commit()
        log_event("PAYMENT_ORDER_CANCELLED", user_id=user_id, entity="payment_order", entity_id=order_id)
        return order

    def expire_pending_orders(self, now: datetime = None) -> int:
        """Expire advance orders whose TTL has lapsed (PendingAdvance -> Expired)."""
        count = self.ledger.expire_orders(ADVANCE, now or datetime.utcnow())
        db.session.commit()
        if count:
            logger.info("Expired %d pending advance orders", count)
        return count
