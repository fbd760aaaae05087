from typing import Any, Mapping, Optional

import structlog
from pydantic import BaseModel

from booking_schemas import BookingRecord, BookingStatus, build_booking_fields
from errors import BookingCreationError, GatewayError, StoreError, ValidationError
from txn_manager import SideEffectRunner

logger = structlog.get_logger(component="checkout")


class CheckoutResult(BaseModel):
    order_id: str
    amount: int
    currency: str
    booking_id: str
    booking_url: Optional[str] = None


class VerificationResult(BaseModel):
    confirmed: bool
    order_id: str
    payment_id: str
    booking_id: Optional[str] = None
    error: Optional[str] = None


class CheckoutService:
    """
    Order orchestration and payment verification for villa bookings.

    The booking record is always created before the gateway order, so every
    gateway attempt is traceable to a record and a gateway failure can be
    written back to it. Updates that follow a decided outcome go through the
    SideEffectRunner and never change that outcome.
    """

    def __init__(self, gateway, store, side_effects: Optional[SideEffectRunner] = None,
                 default_currency: str = "INR"):
        self.gateway = gateway
        self.store = store
        self.side_effects = side_effects or SideEffectRunner()
        self.default_currency = default_currency

    def create_checkout(self, amount: Any, currency: Any, booking_fields: Mapping[str, Any]) -> CheckoutResult:
        currency = currency or self.default_currency
        if isinstance(currency, str) and len(currency) == 3 and currency.isalpha():
            currency, currency_errors = currency.upper(), []
        else:
            currency_errors = ["Currency must be a 3-letter code"]
        try:
            fields = build_booking_fields(booking_fields or {}, amount)
        except ValidationError as exc:
            raise ValidationError(currency_errors + exc.errors,
                                  ["currency"] * len(currency_errors) + exc.fields) from None
        if currency_errors:
            raise ValidationError(currency_errors, ["currency"])

        log = logger.bind(villa=fields.villa_name, amount=fields.amount, currency=currency)
        try:
            handle = self.store.create_booking(fields)
        except StoreError as exc:
            log.error("booking_creation_failed", code=exc.code, status=exc.status, error=exc.message)
            raise BookingCreationError(exc) from exc

        log = log.bind(booking_id=handle.id)
        try:
            order = self.gateway.create_order(fields.amount, currency, notes={"booking_id": handle.id})
        except Exception as exc:
            error = exc if isinstance(exc, GatewayError) else GatewayError(str(exc), code="UNEXPECTED_ERROR")
            log.error("order_creation_failed", code=error.code, description=error.description)
            self.side_effects.run(
                "mark_failed_after_order_error",
                lambda: self.store.update_status(handle, BookingStatus.FAILED),
                booking_id=handle.id,
                attempted_status=BookingStatus.FAILED.value,
            )
            if error is exc:
                raise
            raise error from exc

        self.side_effects.run(
            "attach_order_id",
            lambda: self.store.update_status(handle, BookingStatus.PENDING, gateway_order_id=order.id),
            booking_id=handle.id,
            attempted_status=BookingStatus.PENDING.value,
            gateway_order_id=order.id,
        )
        log.info("checkout_created", order_id=order.id)
        return CheckoutResult(
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            booking_id=handle.id,
            booking_url=handle.url,
        )

    def verify_and_confirm(self, order_id: Optional[str], payment_id: Optional[str], signature: Optional[str],
                           booking_handle: Optional[str] = None) -> VerificationResult:
        """
        Check the checkout signature and settle the booking it was issued for.

        A booking is only failed while it is still pending and only completed
        when it belongs to the signed order; terminal bookings are left as they are.
        """
        missing = [name for name, value in (
            ("razorpay_order_id", order_id),
            ("razorpay_payment_id", payment_id),
            ("razorpay_signature", signature),
        ) if not value]
        if missing:
            raise ValidationError([f"Missing required fields: {', '.join(missing)}"], fields=missing)

        log = logger.bind(order_id=order_id, payment_id=payment_id, booking_id=booking_handle)
        record = self._lookup(booking_handle, log)
        try:
            valid = self.gateway.verify_signature(order_id, payment_id, signature)
        except Exception:
            log.exception("verification_errored")
            self._fail_if_pending(record, "mark_failed_after_verification_error", order_id, payment_id, log)
            raise

        if not valid:
            log.warning("payment_verification_failed")
            self._fail_if_pending(record, "mark_failed_after_bad_signature", order_id, payment_id, log)
            return self._rejected(order_id, payment_id, booking_handle, "Invalid payment signature")

        if record is not None and record.gateway_order_id and record.gateway_order_id != order_id:
            log.warning("booking_order_mismatch", booking_order_id=record.gateway_order_id)
            return self._rejected(order_id, payment_id, booking_handle, "Order does not belong to this booking")

        log.info("payment_verified")
        # the payment is real from here on; a failed bookkeeping update is only logged
        self._mark(booking_handle, BookingStatus.COMPLETED, "mark_completed", order_id, payment_id,
                   attach_ids=True)
        return VerificationResult(confirmed=True, order_id=order_id, payment_id=payment_id, booking_id=booking_handle)

    def _lookup(self, booking_handle, log) -> Optional[BookingRecord]:
        if not booking_handle:
            return None
        try:
            return self.store.get_booking(booking_handle)
        except StoreError as exc:
            log.warning("booking_lookup_failed", code=exc.code, error=exc.message)
            return None

    def _fail_if_pending(self, record: Optional[BookingRecord], action, order_id, payment_id, log):
        if record is None:
            return
        if record.status is not BookingStatus.PENDING or record.gateway_order_id not in (None, order_id):
            log.info("booking_status_kept", status=record.status.value, booking_order_id=record.gateway_order_id)
            return
        self._mark(record.id, BookingStatus.FAILED, action, order_id, payment_id)

    @staticmethod
    def _rejected(order_id, payment_id, booking_handle, error) -> VerificationResult:
        return VerificationResult(
            confirmed=False,
            order_id=order_id,
            payment_id=payment_id,
            booking_id=booking_handle,
            error=error,
        )

    def _mark(self, booking_handle, status, action, order_id, payment_id, attach_ids=False):
        if not booking_handle:
            return
        kwargs = {"gateway_order_id": order_id, "gateway_payment_id": payment_id} if attach_ids else {}
        self.side_effects.run(
            action,
            lambda: self.store.update_status(booking_handle, status, **kwargs),
            booking_id=booking_handle,
            attempted_status=status.value,
            gateway_order_id=order_id,
            gateway_payment_id=payment_id,
        )
