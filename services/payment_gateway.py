"""
Payment gateway adapters.

The booking engine only needs two things from a gateway: open an order for an
amount, and verify that a completed payment really belongs to that order.
Gateway callbacks are delivered at least once, so nothing here may assume a
single delivery; idempotency is handled by the orchestrator on order id.
"""
import logging
from dataclasses import dataclass

import razorpay
from razorpay.errors import SignatureVerificationError
import stripe
from flask import current_app

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Gateway misconfigured or unreachable."""


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    amount: int
    currency: str


class PaymentGateway:
    provider = "NONE"

    def create_order(self, amount: int, currency: str, receipt: str = None, notes: dict = None) -> GatewayOrder:
        raise NotImplementedError

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    provider = "RAZORPAY"

    def __init__(self, key_id: str, key_secret: str):
        if not key_id or not key_secret:
            raise GatewayError("Razorpay keys missing (RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET)")
        self.client = razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount, currency, receipt=None, notes=None):
        data = {"amount": int(amount), "currency": currency}
        if receipt:
            data["receipt"] = receipt
        if notes:
            data["notes"] = {k: str(v) for k, v in notes.items()}
        try:
            order = self.client.order.create(data=data)
        except Exception as exc:
            raise GatewayError(f"Razorpay order creation failed: {exc}") from exc
        return GatewayOrder(order_id=order["id"], amount=int(order["amount"]), currency=order["currency"])

    def verify_signature(self, order_id, payment_id, signature):
        if not order_id or not payment_id or not signature:
            return False
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            return False
        return True


class StripeGateway(PaymentGateway):
    """
    PaymentIntents play the role of orders. Stripe has no client-side payment
    signature; the webhook signature is checked in routes/stripe_webhook.py,
    and here we confirm with Stripe that the intent actually succeeded.
    """
    provider = "STRIPE"

    def __init__(self, secret_key: str):
        if not secret_key:
            raise GatewayError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        stripe.api_key = secret_key

    def create_order(self, amount, currency, receipt=None, notes=None):
        metadata = {k: str(v) for k, v in (notes or {}).items()}
        if receipt:
            metadata["receipt"] = receipt
        try:
            intent = stripe.PaymentIntent.create(
                amount=int(amount),
                currency=currency.lower(),
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            raise GatewayError(f"Stripe order creation failed: {exc}") from exc
        return GatewayOrder(order_id=intent["id"], amount=int(intent["amount"]), currency=currency)

    def verify_signature(self, order_id, payment_id, signature=None):
        if not order_id or not payment_id:
            return False
        try:
            intent = stripe.PaymentIntent.retrieve(order_id)
        except stripe.StripeError:
            logger.warning("Stripe lookup failed for %s", order_id)
            return False
        if intent.get("status") != "succeeded":
            return False
        return payment_id in (intent.get("latest_charge"), intent.get("id"))


def build_gateway(config) -> PaymentGateway:
    provider = (config.get("PAYMENT_PROVIDER") or "razorpay").lower()
    if provider == "razorpay":
        return RazorpayGateway(config.get("RAZORPAY_KEY_ID"), config.get("RAZORPAY_KEY_SECRET"))
    if provider == "stripe":
        return StripeGateway(config.get("STRIPE_SECRET_KEY"))
    raise GatewayError(f"Unknown PAYMENT_PROVIDER: {provider}")


def get_gateway() -> PaymentGateway:
    """Gateway for the current app, built on first use unless one was installed."""
    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        gateway = build_gateway(current_app.config)
        current_app.extensions["payment_gateway"] = gateway
    return gateway
