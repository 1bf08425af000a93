import stripe
from flask import Blueprint, current_app, request, jsonify

from models.payment import ADVANCE, BALANCE
from services import get_orchestrator
from services.errors import BookingError
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event.get("type")
    if event_type not in ("payment_intent.succeeded", "payment_intent.canceled"):
        return jsonify(received=True), 200

    intent = event["data"]["object"]
    order_id = intent.get("id")
    meta = intent.get("metadata", {}) or {}
    kind = meta.get("kind")
    orchestrator = get_orchestrator()

    # Stripe retries until it gets a 2xx; business failures are acknowledged
    # and left in the audit log, retrying them would not change the outcome.
    try:
        if event_type == "payment_intent.canceled":
            if kind == ADVANCE:
                orchestrator.cancel_order(order_id)
            return jsonify(received=True), 200

        payment_id = intent.get("latest_charge") or order_id
        if kind == ADVANCE:
            booking = orchestrator.confirm_advance(order_id, payment_id, sig_header)
        elif kind == BALANCE:
            booking = orchestrator.confirm_balance(order_id, payment_id, sig_header)
        else:
            return jsonify(received=True), 200
    except BookingError as exc:
        log_event("STRIPE_WEBHOOK_REJECTED", entity="payment_order", entity_id=order_id,
                  metadata={"event": event_type, "error": exc.code, "detail": exc.message})
        return jsonify(received=True, error=exc.code), 200

    return jsonify(received=True, bookingId=booking.id, status=booking.status), 200
