from datetime import datetime, timedelta

import pytest

from models import db
from models.audit_log import AuditLog
from models.booking import Booking, CANCELLED, COMPLETED, CONFIRMED, SERVICE_DONE
from models.payment import ADVANCE, BALANCE, EXPIRED, PAID, PENDING, PaymentOrder
from models.service import Service
from models.slot import SlotCounter
from services import get_orchestrator
from services.ledger import BookingLedger
from services.errors import (
    CapacityExceededError,
    InvalidTransitionError,
    NotFoundError,
    NothingDueError,
    PaymentVerificationError,
    ValidationError,
)
from tests.conftest import sign

SLOT = "10:00 AM"


@pytest.fixture
def orch(app_ctx, gateway):
    return get_orchestrator()


def _counter(day, label=SLOT):
    row = SlotCounter.query.filter_by(date=day, time_label=label).first()
    return row.active_count if row else 0


def _book(orch, user_id, service_id, day, label=SLOT):
    order = orch.initiate(user_id, service_id, day.isoformat(), label)
    payment_id = "pay_" + order.order_id
    return orch.confirm_advance(order.order_id, payment_id, sign(order.order_id, payment_id))


def test_full_lifecycle_splits_payment(orch, gateway, client_id, staff_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day.isoformat(), SLOT, style_note="  layered bob ")
    assert order.kind == ADVANCE
    assert order.status == PENDING
    assert order.amount == 800
    assert order.total_amount == 1000
    assert gateway.created[0]["amount"] == 800
    # initiating holds nothing
    assert _counter(future_day) == 0
    assert Booking.query.count() == 0

    booking = orch.confirm_advance(order.order_id, "pay_1", sign(order.order_id, "pay_1"))
    assert booking.status == CONFIRMED
    assert (booking.total_amount, booking.advance_amount, booking.balance_amount) == (1000, 800, 200)
    assert booking.style_note == "layered bob"
    assert booking.advance_payment_id == "pay_1"
    assert _counter(future_day) == 1
    assert PaymentOrder.query.filter_by(order_id=order.order_id).one().status == PAID

    orch.mark_service_done(booking.id, staff_user_id=staff_id)
    assert booking.status == SERVICE_DONE
    assert booking.service_done_at is not None

    balance = orch.request_balance(booking.id, user_id=client_id)
    assert balance.kind == BALANCE
    assert balance.amount == 200
    assert balance.booking_id == booking.id

    done = orch.confirm_balance(balance.order_id, "pay_2", sign(balance.order_id, "pay_2"))
    assert done.id == booking.id
    assert done.status == COMPLETED
    assert done.balance_order_id == balance.order_id
    assert done.paid_amount == 1000
    assert done.due_amount == 0
    # completed bookings still occupy their slot
    assert _counter(future_day) == 1

    actions = [a.action for a in AuditLog.query.order_by(AuditLog.id).all()]
    assert actions.count("PAYMENT_ORDER_CREATED") == 2
    assert "BOOKING_CONFIRMED" in actions
    assert "BOOKING_SERVICE_DONE" in actions
    assert "BOOKING_COMPLETED" in actions


def test_confirm_advance_replay_returns_same_booking(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)
    sig = sign(order.order_id, "pay_1")

    first = orch.confirm_advance(order.order_id, "pay_1", sig)
    second = orch.confirm_advance(order.order_id, "pay_1", sig)

    assert first.id == second.id
    assert Booking.query.count() == 1
    assert _counter(future_day) == 1


def test_confirm_balance_replay_returns_same_booking(orch, client_id, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)
    orch.mark_service_done(booking.id)
    balance = orch.request_balance(booking.id)
    sig = sign(balance.order_id, "pay_b")

    first = orch.confirm_balance(balance.order_id, "pay_b", sig)
    second = orch.confirm_balance(balance.order_id, "pay_b", sig)

    assert first.id == second.id == booking.id
    assert second.status == COMPLETED


def test_bad_signature_changes_nothing(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)

    with pytest.raises(PaymentVerificationError):
        orch.confirm_advance(order.order_id, "pay_1", "not-a-signature")

    assert Booking.query.count() == 0
    assert _counter(future_day) == 0
    assert db.session.get(PaymentOrder, order.id).status == PENDING
    assert AuditLog.query.filter_by(action="PAYMENT_VERIFY_FAIL").count() == 1


def test_signature_for_other_payment_is_rejected(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)
    with pytest.raises(PaymentVerificationError):
        orch.confirm_advance(order.order_id, "pay_1", sign(order.order_id, "pay_2"))


def test_full_slot_rejects_confirmation(app, orch, make_user, service_id, future_day):
    capacity = app.config["SLOT_CAPACITY"]
    users = [make_user(f"guest{i}@example.com") for i in range(capacity + 1)]

    # all orders opened while the slot is still free
    orders = [orch.initiate(uid, service_id, future_day, SLOT) for uid in users]
    for order in orders[:capacity]:
        orch.confirm_advance(order.order_id, "pay_" + order.order_id, sign(order.order_id, "pay_" + order.order_id))
    assert _counter(future_day) == capacity

    late = orders[-1]
    with pytest.raises(CapacityExceededError) as info:
        orch.confirm_advance(late.order_id, "pay_late", sign(late.order_id, "pay_late"))

    assert info.value.payment_captured is True
    assert info.value.to_dict()["paymentCaptured"] is True
    assert _counter(future_day) == capacity
    assert Booking.query.count() == capacity
    assert orch.ledger.find_by_advance_order(late.order_id) is None
    assert db.session.get(PaymentOrder, late.id).status == PENDING
    assert AuditLog.query.filter_by(action="BOOKING_CAPACITY_REFUND_REQUIRED").count() == 1


def test_initiate_on_full_slot_is_rejected_early(app, orch, make_user, service_id, future_day):
    for i in range(app.config["SLOT_CAPACITY"]):
        _book(orch, make_user(f"guest{i}@example.com"), service_id, future_day)

    with pytest.raises(CapacityExceededError):
        orch.initiate(make_user("late@example.com"), service_id, future_day, SLOT)
    # other labels are unaffected
    assert orch.initiate(make_user("other@example.com"), service_id, future_day, "11:00 AM").amount == 800


def test_initiate_validation(orch, client_id, service_id, future_day):
    with pytest.raises(ValidationError):
        orch.initiate(client_id, service_id, future_day, "07:00 AM")
    with pytest.raises(ValidationError):
        orch.initiate(client_id, service_id, "next tuesday", SLOT)
    with pytest.raises(ValidationError):
        orch.initiate(client_id, "haircut", future_day, SLOT)
    with pytest.raises(ValidationError):
        orch.initiate(client_id, service_id, datetime.now().date() - timedelta(days=1), SLOT)
    with pytest.raises(NotFoundError):
        orch.initiate(client_id, 9999, future_day, SLOT)


def test_inactive_service_cannot_be_booked(orch, client_id, service_id, future_day):
    db.session.get(Service, service_id).is_active = False
    db.session.commit()
    with pytest.raises(NotFoundError):
        orch.initiate(client_id, service_id, future_day, SLOT)


def test_confirm_unknown_order(orch):
    with pytest.raises(NotFoundError):
        orch.confirm_advance("order_missing", "pay_1", sign("order_missing", "pay_1"))


def test_booking_data_must_match_order(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)
    sig = sign(order.order_id, "pay_1")

    with pytest.raises(ValidationError) as info:
        orch.confirm_advance(order.order_id, "pay_1", sig, booking_data={"time": "11:00 AM"})
    assert info.value.to_dict()["paymentCaptured"] is True
    assert Booking.query.count() == 0

    booking = orch.confirm_advance(order.order_id, "pay_1", sig, booking_data={
        "serviceId": service_id, "date": future_day.isoformat(), "time": SLOT, "userId": None,
    })
    assert booking.time_label == SLOT


def test_transitions_are_forward_only(orch, client_id, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)

    # balance cannot be requested before the service is done
    with pytest.raises(InvalidTransitionError):
        orch.request_balance(booking.id)

    orch.mark_service_done(booking.id)
    with pytest.raises(InvalidTransitionError):
        orch.mark_service_done(booking.id)
    with pytest.raises(InvalidTransitionError):
        orch.cancel(booking.id)

    balance = orch.request_balance(booking.id)
    orch.confirm_balance(balance.order_id, "pay_b", sign(balance.order_id, "pay_b"))
    with pytest.raises(InvalidTransitionError):
        orch.mark_service_done(booking.id)
    with pytest.raises(InvalidTransitionError):
        orch.request_balance(booking.id)


def test_request_balance_by_other_client_is_hidden(orch, client_id, make_user, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)
    orch.mark_service_done(booking.id)
    with pytest.raises(NotFoundError):
        orch.request_balance(booking.id, user_id=make_user("someone@example.com"))


def test_nothing_due_when_advance_covers_total(app, orch, client_id, service_id, future_day):
    orch.advance_ratio = 1.0
    booking = _book(orch, client_id, service_id, future_day)
    assert booking.balance_amount == 0

    orch.mark_service_done(booking.id)
    with pytest.raises(NothingDueError):
        orch.request_balance(booking.id)
    assert booking.status == SERVICE_DONE


def test_cancel_confirmed_releases_slot(orch, client_id, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)
    assert _counter(future_day) == 1

    orch.cancel(booking.id, reason="Running late", user_id=client_id, enforce_cutoff=True)

    assert booking.status == CANCELLED
    assert booking.cancel_reason == "Running late"
    assert booking.cancelled_at is not None
    assert _counter(future_day) == 0
    assert orch.ledger.count_active(future_day, SLOT) == 0

    with pytest.raises(InvalidTransitionError):
        orch.cancel(booking.id)


def test_cancel_inside_cutoff_is_refused_for_clients(orch, client_id, admin_id, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)
    orch.cancel_cutoff_hours = 24 * 365

    with pytest.raises(InvalidTransitionError):
        orch.cancel(booking.id, user_id=client_id, enforce_cutoff=True)
    assert booking.status == CONFIRMED

    # staff-side cancellation ignores the window
    orch.cancel(booking.id, reason="Stylist unavailable", actor_id=admin_id)
    assert booking.status == CANCELLED
    assert _counter(future_day) == 0


def test_cancel_by_other_client_is_hidden(orch, client_id, make_user, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)
    with pytest.raises(NotFoundError):
        orch.cancel(booking.id, user_id=make_user("someone@example.com"))


def test_cancelled_order_cannot_be_confirmed(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)
    orch.cancel_order(order.order_id, user_id=client_id)

    with pytest.raises(InvalidTransitionError) as info:
        orch.confirm_advance(order.order_id, "pay_1", sign(order.order_id, "pay_1"))

    assert info.value.to_dict()["paymentCaptured"] is True
    assert Booking.query.count() == 0
    assert _counter(future_day) == 0

    with pytest.raises(InvalidTransitionError):
        orch.cancel_order(order.order_id)


def test_expire_pending_orders(orch, client_id, service_id, future_day):
    stale = orch.initiate(client_id, service_id, future_day, SLOT)
    paid = orch.initiate(client_id, service_id, future_day, "11:00 AM")
    orch.confirm_advance(paid.order_id, "pay_1", sign(paid.order_id, "pay_1"))

    assert orch.expire_pending_orders() == 0
    later = datetime.utcnow() + timedelta(seconds=orch.order_ttl_seconds + 60)
    assert orch.expire_pending_orders(now=later) == 1

    assert db.session.get(PaymentOrder, stale.id).status == EXPIRED
    assert db.session.get(PaymentOrder, paid.id).status == PAID
    with pytest.raises(InvalidTransitionError):
        orch.confirm_advance(stale.order_id, "pay_2", sign(stale.order_id, "pay_2"))


def test_totals(orch, client_id, service_id, future_day):
    done = _book(orch, client_id, service_id, future_day)
    orch.mark_service_done(done.id)
    balance = orch.request_balance(done.id)
    orch.confirm_balance(balance.order_id, "pay_b", sign(balance.order_id, "pay_b"))

    _book(orch, client_id, service_id, future_day, "11:00 AM")
    dropped = _book(orch, client_id, service_id, future_day, "12:00 PM")
    orch.cancel(dropped.id)

    assert orch.ledger.totals() == {"bookings": 2, "revenue": 1000 + 800, "dueAtSalon": 200}


class _LaggingLedger(BookingLedger):
    """Misses the first replay lookup, as a delivery that read before the winner committed would."""

    def __init__(self):
        self.stale_reads = {"advance": 1, "balance": 1}

    def _stale(self, kind):
        if self.stale_reads[kind]:
            self.stale_reads[kind] -= 1
            return True
        return False

    def find_by_advance_order(self, order_id):
        return None if self._stale("advance") else super().find_by_advance_order(order_id)

    def find_by_balance_order(self, order_id):
        return None if self._stale("balance") else super().find_by_balance_order(order_id)


def test_overlapping_advance_delivery_returns_first_booking(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)
    sig = sign(order.order_id, "pay_1")
    first = orch.confirm_advance(order.order_id, "pay_1", sig)

    orch.ledger = _LaggingLedger()
    second = orch.confirm_advance(order.order_id, "pay_1", sig)

    assert second.id == first.id
    assert Booking.query.count() == 1
    assert _counter(future_day) == 1


def test_overlapping_balance_delivery_returns_first_booking(orch, client_id, service_id, future_day):
    booking = _book(orch, client_id, service_id, future_day)
    orch.mark_service_done(booking.id)
    balance = orch.request_balance(booking.id)
    sig = sign(balance.order_id, "pay_b")
    orch.confirm_balance(balance.order_id, "pay_b", sig)

    orch.ledger = _LaggingLedger()
    again = orch.confirm_balance(balance.order_id, "pay_b", sig)

    assert again.id == booking.id
    assert again.status == COMPLETED


def test_paid_order_without_booking_is_still_rejected(orch, client_id, service_id, future_day):
    order = orch.initiate(client_id, service_id, future_day, SLOT)
    orch.ledger.settle_order(order.order_id, PENDING, PAID, payment_id="pay_1")
    db.session.commit()

    with pytest.raises(InvalidTransitionError) as info:
        orch.confirm_advance(order.order_id, "pay_1", sign(order.order_id, "pay_1"))
    assert info.value.to_dict()["paymentCaptured"] is True
