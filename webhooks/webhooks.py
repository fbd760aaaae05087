import json
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from booking_schemas import BookingStatus
from errors import StoreError, error_response
from payments.gateway import verify_webhook_signature

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

logger = structlog.get_logger(component="razorpay_webhook")

PAID_EVENTS = ("order.paid", "payment.captured")
FAILED_EVENTS = ("payment.failed",)


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    return ((payload.get("payload") or {}).get(name) or {}).get("entity") or {}


def _notes(entity: Dict[str, Any]) -> Dict[str, Any]:
    notes = entity.get("notes")
    return notes if isinstance(notes, dict) else {}


def handle_payment_event(event: Dict[str, Any], store, side_effects) -> Dict[str, Any]:
    """
    Apply a verified Razorpay event to the booking it belongs to.
    A paid event completes the booking; a failed payment only fails a booking
    that is still pending, so a completed booking is never downgraded.
    """
    event_type = event.get("event")
    if event_type not in PAID_EVENTS + FAILED_EVENTS:
        return {"handled": False}

    order = _entity(event, "order")
    payment = _entity(event, "payment")
    order_id = order.get("id") or payment.get("order_id")
    payment_id = payment.get("id")
    booking_id: Optional[str] = _notes(order).get("booking_id") or _notes(payment).get("booking_id")

    log = logger.bind(event_type=event_type, order_id=order_id, payment_id=payment_id)
    try:
        if booking_id:
            record = store.get_booking(booking_id)
        elif order_id:
            record = store.find_by_gateway_order(order_id)
        else:
            record = None
    except StoreError as exc:
        log.error("webhook_booking_lookup_failed", booking_id=booking_id, error=exc.message)
        return {"handled": False, "reason": "lookup_failed"}

    if record is None:
        log.warning("webhook_booking_not_found", booking_id=booking_id)
        return {"handled": False, "reason": "booking_not_found"}

    if event_type in PAID_EVENTS:
        if record.status is BookingStatus.COMPLETED and record.gateway_payment_id:
            return {"handled": True, "bookingId": record.id, "status": record.status.value}
        target = BookingStatus.COMPLETED
    else:
        if record.status is not BookingStatus.PENDING:
            log.info("webhook_status_kept", booking_id=record.id, status=record.status.value)
            return {"handled": True, "bookingId": record.id, "status": record.status.value}
        target = BookingStatus.FAILED

    updated = side_effects.run(
        f"webhook_{event_type}",
        lambda: store.update_status(record.id, target, gateway_order_id=order_id, gateway_payment_id=payment_id),
        booking_id=record.id,
        attempted_status=target.value,
        gateway_order_id=order_id,
        gateway_payment_id=payment_id,
    )
    return {"handled": updated, "bookingId": record.id, "status": target.value if updated else record.status.value}


@router.post("/razorpay")
async def razorpay_webhook(request: Request, x_razorpay_signature: str = Header(None)):
    body = await request.body()
    settings = request.app.state.settings

    if not verify_webhook_signature(body, x_razorpay_signature, settings.razorpay_webhook_secret):
        logger.warning("webhook_signature_rejected")
        return error_response(400, "Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError:
        return error_response(400, "Invalid JSON")
    if not isinstance(event, dict):
        return error_response(400, "Invalid JSON")

    logger.info("webhook_received", event_type=event.get("event"))
    result = await run_in_threadpool(
        handle_payment_event, event, request.app.state.store, request.app.state.side_effects
    )
    return JSONResponse(content={"received": True, "result": result})
