from flask import Blueprint, jsonify, g, request

from models.audit_log import AuditLog
from security.rbac import ADMIN, STAFF, require_roles
from services import get_allocator, get_orchestrator
from services.orchestrator import parse_date
from utils.audit import log_event

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/dashboard")
@require_roles(STAFF)
def dashboard():
    stats = get_orchestrator().ledger.totals()
    log_event("ADMIN_DASHBOARD_VIEW", user_id=g.user.id)
    return jsonify(stats=stats), 200


@admin_bp.get("/bookings")
@require_roles(STAFF)
def list_bookings():
    status = request.args.get("status")
    date_str = request.args.get("date")  # YYYY-MM-DD
    day = parse_date(date_str) if date_str else None

    rows = get_orchestrator().ledger.search(status=status, day=day)
    return jsonify([b.to_dict() for b in rows]), 200


@admin_bp.get("/slots")
@require_roles(STAFF)
def slot_report():
    """Counter view next to a ledger recount, so drift is visible to staff."""
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date required (YYYY-MM-DD)"), 400
    day = parse_date(date_str)

    allocator = get_allocator()
    ledger = get_orchestrator().ledger
    counters = allocator.counts(day)
    out = []
    for slot in allocator.list_slots(day):
        counter = counters.get(slot["time"], 0)
        active = ledger.count_active(day, slot["time"])
        out.append(dict(slot, capacity=allocator.capacity, counter=counter, active=active,
                        consistent=counter == active))
    return jsonify(out), 200


# ---------- ADMIN: cancel any confirmed booking (no cutoff) ----------
@admin_bp.post("/bookings/<int:booking_id>/cancel")
@require_roles(ADMIN)
def admin_cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or "Admin cancellation"

    booking = get_orchestrator().cancel(booking_id, reason=reason, actor_id=g.user.id)
    return jsonify(message="Cancelled by admin", status=booking.status), 200


@admin_bp.get("/audit-logs")
@require_roles(ADMIN)
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    entity_id = request.args.get("entity_id")

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    rows = q.order_by(AuditLog.id.desc()).limit(limit).all()
    return jsonify([r.to_dict() for r in rows]), 200
