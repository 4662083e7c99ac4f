import logging

import razorpay
from flask import current_app
from razorpay.errors import SignatureVerificationError

from errors import BadRequest, GatewayError, ServerError

logger = logging.getLogger(__name__)

MIN_AMOUNT_PAISE = 100


class SignatureMismatch(Exception):
    """Raised when the gateway signature does not match order|payment."""


class RazorpayGateway:
    """Thin wrapper over the Razorpay SDK client."""

    def __init__(self, key_id, key_secret):
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = razorpay.Client(auth=(key_id or "", key_secret or ""))

    @classmethod
    def from_app(cls):
        return cls(current_app.config["RAZORPAY_KEY_ID"], current_app.config["RAZORPAY_KEY_SECRET"])

    @property
    def configured(self):
        return bool(self.key_secret)

    def create_order(self, amount, currency="INR", receipt=None, notes=None):
        """Create a gateway order for ``amount`` rupees; returns the SDK dict."""
        try:
            numeric = float(amount)
        except (TypeError, ValueError):
            raise BadRequest("Invalid amount", "INVALID_AMOUNT")
        paise = int(round(numeric * 100))
        if paise < MIN_AMOUNT_PAISE:
            raise BadRequest("Minimum order amount is ₹1.00", "INVALID_AMOUNT")
        if not self.key_id or not self.key_secret:
            raise ServerError("Payment gateway not configured", "PAYMENT_GATEWAY_NOT_CONFIGURED")

        options = {
            "amount": paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            order = self.client.order.create(data=options)
        except Exception as e:
            logger.exception("Razorpay order creation failed")
            raise GatewayError(f"Failed to create payment order: {e}")
        logger.info("Razorpay order created: %s (%s paise)", order.get("id"), paise)
        return order

    def verify(self, gateway_order_id, payment_id, signature):
        """HMAC-SHA256(secret, "order|payment") must equal ``signature``."""
        if not self.configured:
            raise ServerError("Payment gateway not configured", "PAYMENT_GATEWAY_NOT_CONFIGURED")
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": gateway_order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except SignatureVerificationError:
            raise SignatureMismatch(payment_id)
