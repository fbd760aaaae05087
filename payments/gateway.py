import hashlib
import hmac
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import razorpay
import requests
import structlog

from booking_schemas import GatewayOrder, parse_amount
from errors import ConfigurationError, GatewayError, ValidationError
from logging_setup import mask

NOTES_SOURCE = "villa-bookings"

# razorpay SDK exception -> gateway error code it was raised for
_SDK_ERROR_CODES = {
    razorpay.errors.BadRequestError: "BAD_REQUEST_ERROR",
    razorpay.errors.GatewayError: "GATEWAY_ERROR",
    razorpay.errors.ServerError: "SERVER_ERROR",
}

logger = structlog.get_logger(component="razorpay_gateway")


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256(secret, "<order_id>|<payment_id>") as lowercase hex."""
    if not secret:
        raise ConfigurationError("Razorpay key secret is not configured", missing=["RAZORPAY_KEY_SECRET"])
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str], webhook_secret: str) -> bool:
    if not webhook_secret:
        raise ConfigurationError("Razorpay webhook secret is not configured", missing=["RAZORPAY_WEBHOOK_SECRET"])
    if not signature:
        return False
    expected = hmac.new(webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def _wrap_sdk_error(exc: Exception, action: str) -> GatewayError:
    for error_cls, code in _SDK_ERROR_CODES.items():
        if isinstance(exc, error_cls):
            return GatewayError(str(exc) or f"Razorpay {action} failed", code=code)
    if isinstance(exc, requests.exceptions.RequestException):
        status = getattr(getattr(exc, "response", None), "status_code", None)
        return GatewayError(f"Could not reach Razorpay: {exc}", code="NETWORK_ERROR", status_code=status)
    return GatewayError(f"Razorpay {action} failed: {exc}", code="UNEXPECTED_ERROR")


class RazorpayGateway:
    """
    Thin wrapper over the Razorpay SDK client.
    Credentials are validated on construction; pass `client` to inject a double.
    """

    def __init__(self, key_id: str, key_secret: str, client=None, environment: str = "development"):
        missing = [name for name, value in (("RAZORPAY_KEY_ID", key_id), ("RAZORPAY_KEY_SECRET", key_secret)) if not value]
        if missing:
            raise ConfigurationError("Razorpay credentials are not configured", missing=missing)
        self._key_id = key_id
        self._key_secret = key_secret
        self._environment = environment
        self._client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: Any, currency: str = "INR", notes: Optional[Dict[str, Any]] = None) -> GatewayOrder:
        minor_units = parse_amount(amount)
        if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
            raise ValidationError(["Currency must be a 3-letter code"], fields=["currency"])

        options = {
            "amount": minor_units,          # already in paise
            "currency": currency.upper(),
            "receipt": f"rcpt_{int(time.time() * 1000)}",
            "payment_capture": 1,
            "notes": {
                "source": NOTES_SOURCE,
                "created_at": datetime.now(timezone.utc).isoformat(),
                "environment": self._environment,
                **(notes or {}),
            },
        }
        logger.info("order_create_requested", amount=options["amount"], currency=options["currency"],
                    receipt=options["receipt"], key_id=mask(self._key_id))

        try:
            order = self._client.order.create(data=options)
        except Exception as exc:
            error = _wrap_sdk_error(exc, "order creation")
            logger.error("order_create_failed", code=error.code, description=error.description)
            raise error from exc

        if not order or not order.get("id"):
            logger.error("order_create_invalid_response", response=order)
            raise GatewayError("Invalid response from Razorpay: missing order id", code="INVALID_RESPONSE", details=order)

        logger.info("order_created", order_id=order["id"], amount=order.get("amount"), status=order.get("status"))
        return GatewayOrder(
            id=order["id"],
            amount=order.get("amount", minor_units),
            currency=order.get("currency", options["currency"]),
            status=order.get("status", "created"),
            receipt=order.get("receipt", options["receipt"]),
            notes=order.get("notes") or {},
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Constant-time check of the checkout signature. Raises ConfigurationError without a secret."""
        expected = compute_signature(self._key_secret, order_id, payment_id)
        if not isinstance(signature, str):
            return False
        valid = hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
        if not valid:
            logger.warning("signature_mismatch", order_id=order_id, payment_id=payment_id,
                           received=signature[:10] + "...")
        return valid

    def fetch_order(self, order_id: str) -> GatewayOrder:
        try:
            order = self._client.order.fetch(order_id)
        except Exception as exc:
            raise _wrap_sdk_error(exc, "order fetch") from exc
        return GatewayOrder(
            id=order["id"],
            amount=order.get("amount", 0),
            currency=order.get("currency", "INR"),
            status=order.get("status", "created"),
            receipt=order.get("receipt"),
            notes=order.get("notes") or {},
        )

    def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        try:
            result = self._client.order.payments(order_id)
        except Exception as exc:
            raise _wrap_sdk_error(exc, "payment lookup") from exc
        return list((result or {}).get("items", []))
