from fastapi import APIRouter, Request

from booking_schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from errors import GatewayError, error_response

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _checkout(request: Request):
    return request.app.state.checkout


@router.post("/orders", response_model=CreateOrderResponse)
def create_order(body: CreateOrderRequest, request: Request):
    notes = body.notes.model_dump(by_alias=True, exclude_none=True)
    try:
        result = _checkout(request).create_checkout(body.amount, body.currency, notes)
    except GatewayError as exc:
        return error_response(500, "Failed to create order", details=exc.details())

    return CreateOrderResponse(
        order_id=result.order_id,
        amount=result.amount,
        currency=result.currency,
        booking_id=result.booking_id,
    )


@router.post("/verify", response_model=VerifyPaymentResponse)
@router.post("/verify-payment", response_model=VerifyPaymentResponse, include_in_schema=False)
def verify_payment(body: VerifyPaymentRequest, request: Request):
    result = _checkout(request).verify_and_confirm(
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        body.booking_id,
    )
    if not result.confirmed:
        return error_response(400, "Payment verification failed", details=result.error)

    return VerifyPaymentResponse(
        payment_id=result.payment_id,
        order_id=result.order_id,
        booking_id=result.booking_id,
    )
