from flask import Blueprint, request, jsonify, g

from models.service import Service
from security.rbac import STAFF, is_staff, login_required, require_roles
from services import get_allocator, get_orchestrator
from services.errors import ValidationError
from services.orchestrator import parse_date

booking_bp = Blueprint("booking", __name__)


def _pick(data: dict, *names):
    # gateway checkout scripts post razorpay_* names, our own clients post camelCase
    for name in names:
        value = data.get(name)
        if value not in (None, ""):
            return value
    return None


def _require(data: dict, *names):
    value = _pick(data, *names)
    if value is None:
        raise ValidationError(f"{names[0]} required")
    return str(value).strip()


def _order_json(order):
    return {"orderId": order.order_id, "amount": order.amount, "currency": order.currency}


# ---------- CATALOG: read-only ----------
@booking_bp.get("/services")
def list_services():
    rows = Service.query.filter_by(is_active=True).order_by(Service.category, Service.name).all()
    return jsonify([
        {
            "id": s.id,
            "name": s.name,
            "category": s.category,
            "description": s.description,
            "price": s.price,
            "durationMinutes": s.duration_minutes,
        }
        for s in rows
    ]), 200


# ---------- CLIENTS: view slot availability ----------
@booking_bp.get("/slots")
def list_slots():
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date required (YYYY-MM-DD)"), 400
    day = parse_date(date_str)
    return jsonify(get_allocator().list_slots(day)), 200


# ---------- CLIENTS: open advance payment ----------
@booking_bp.post("/booking/initiate")
@login_required
def initiate_booking():
    data = request.get_json(silent=True) or {}
    order = get_orchestrator().initiate(
        g.user.id,
        _require(data, "serviceId", "service_id"),
        _require(data, "date"),
        _require(data, "time", "timeSlot"),
        style_note=data.get("styleNote"),
    )
    return jsonify(_order_json(order)), 201


# ---------- GATEWAY CALLBACK: advance paid (idempotent by orderId) ----------
@booking_bp.post("/booking/confirm-advance")
def confirm_advance():
    data = request.get_json(silent=True) or {}
    booking_data = data.get("bookingData") if isinstance(data.get("bookingData"), dict) else data

    booking = get_orchestrator().confirm_advance(
        _require(data, "orderId", "razorpay_order_id"),
        _require(data, "paymentId", "razorpay_payment_id"),
        _require(data, "signature", "razorpay_signature"),
        booking_data={
            "serviceId": _pick(booking_data, "serviceId", "service_id"),
            "date": _pick(booking_data, "date"),
            "time": _pick(booking_data, "time", "timeSlot"),
            "userId": _pick(booking_data, "userId", "user_id"),
        },
    )
    return jsonify(success=True, bookingId=booking.id, status=booking.status), 200


# ---------- STAFF: service rendered ----------
@booking_bp.put("/booking/<int:booking_id>/service-done")
@require_roles(STAFF)
def mark_service_done(booking_id: int):
    booking = get_orchestrator().mark_service_done(booking_id, staff_user_id=g.user.id)
    return jsonify(success=True, status=booking.status), 200


# ---------- CLIENTS: open balance payment ----------
@booking_bp.post("/booking/<int:booking_id>/request-balance")
@login_required
def request_balance(booking_id: int):
    owner_id = None if is_staff() else g.user.id
    order = get_orchestrator().request_balance(booking_id, user_id=owner_id)
    return jsonify(_order_json(order)), 201


# ---------- GATEWAY CALLBACK: balance paid (idempotent by orderId) ----------
@booking_bp.post("/booking/confirm-balance")
def confirm_balance():
    data = request.get_json(silent=True) or {}
    booking = get_orchestrator().confirm_balance(
        _require(data, "orderId", "razorpay_order_id"),
        _require(data, "paymentId", "razorpay_payment_id"),
        _require(data, "signature", "razorpay_signature"),
    )
    return jsonify(success=True, bookingId=booking.id, status=booking.status), 200


# ---------- CLIENTS: cancel (policy window) ----------
@booking_bp.post("/booking/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None
    booking = get_orchestrator().cancel(booking_id, reason=reason, user_id=g.user.id, enforce_cutoff=True)
    return jsonify(message="Cancelled", status=booking.status), 200


@booking_bp.post("/booking/orders/<order_id>/cancel")
@login_required
def cancel_pending_order(order_id: str):
    order = get_orchestrator().cancel_order(order_id, user_id=g.user.id)
    return jsonify(message="Payment cancelled", orderId=order.order_id), 200


# ---------- CLIENTS: my ledger ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    status = request.args.get("status")
    rows = get_orchestrator().ledger.for_user(g.user.id, status=status)
    return jsonify([b.to_dict() for b in rows]), 200
