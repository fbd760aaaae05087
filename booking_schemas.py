import re
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from errors import InvalidAmountError, ValidationError

MIN_GUESTS, MAX_GUESTS = 1, 10
MIN_MATTRESSES, MAX_MATTRESSES = 0, 5

# wire name -> BookingFields attribute
REQUIRED_BOOKING_FIELDS = (
    ("villa", "villa_name"),
    ("checkIn", "check_in"),
    ("checkOut", "check_out"),
    ("customerName", "customer_name"),
    ("customerEmail", "customer_email"),
    ("customerPhone", "customer_phone"),
)


class BookingStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not BookingStatus.PENDING


class BookingFields(BaseModel):
    """Booking parameters as stored on creation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    villa_name: str
    check_in: date
    check_out: date
    guests: int = MIN_GUESTS
    extra_mattresses: int = MIN_MATTRESSES
    customer_name: str
    customer_email: str
    customer_phone: str         # digits only
    amount: int                 # minor currency units (paise)


class BookingRecord(BookingFields):
    id: str
    url: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None


class RecordHandle(BaseModel):
    id: str
    url: Optional[str] = None


class Ack(BaseModel):
    id: str
    status: BookingStatus


class GatewayOrder(BaseModel):
    """Read-only view of an order owned by the payment gateway."""

    id: str
    amount: int
    currency: str
    status: str = "created"
    receipt: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# HTTP bodies
# ---------------------------------------------------------------------------

class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrderNotes(_WireModel):
    # required-ness is checked by the orchestrator so every missing field is reported at once
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    villa: Optional[str] = None
    check_in: Optional[str] = Field(default=None, alias="checkIn")
    check_out: Optional[str] = Field(default=None, alias="checkOut")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    customer_phone: Any = Field(default=None, alias="customerPhone")
    guests: Any = None                  # clamped later, never rejected
    extra_mattresses: Any = Field(default=None, alias="extraMattresses")


class CreateOrderRequest(_WireModel):
    amount: Any = None
    currency: Any = None
    notes: OrderNotes = Field(default_factory=OrderNotes)


class CreateOrderResponse(_WireModel):
    success: bool = True
    order_id: str = Field(alias="orderId")
    amount: int
    currency: str
    booking_id: str = Field(alias="bookingId")


class VerifyPaymentRequest(_WireModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    booking_id: Optional[str] = Field(default=None, alias="bookingId")


class VerifyPaymentResponse(_WireModel):
    success: bool = True
    message: str = "Payment verified successfully"
    payment_id: str = Field(alias="paymentId")
    order_id: str = Field(alias="orderId")
    booking_id: Optional[str] = Field(default=None, alias="bookingId")


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str


class AvailabilityRequest(_WireModel):
    villa_id: Optional[str] = Field(default=None, alias="villaId")
    check_in: Optional[date] = Field(default=None, alias="checkIn")
    check_out: Optional[date] = Field(default=None, alias="checkOut")


class BookedRange(_WireModel):
    check_in: date = Field(alias="checkIn")
    check_out: date = Field(alias="checkOut")


class AvailabilityResponse(_WireModel):
    available: bool
    booked_dates: List[BookedRange] = Field(default_factory=list, alias="bookedDates")


class BlockedRange(BaseModel):
    start: date
    end: date
    status: str


class BlockedDatesResponse(_WireModel):
    success: bool = True
    blocked_ranges: List[BlockedRange] = Field(default_factory=list, alias="blockedRanges")


# ---------------------------------------------------------------------------
# validation helpers
# ---------------------------------------------------------------------------

def normalize_phone(phone: Any) -> str:
    return re.sub(r"\D", "", str(phone or ""))


def clamp(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def parse_amount(amount: Any) -> int:
    """Coerce a caller supplied amount (minor units) to a positive int."""
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmountError(amount)
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmountError(amount)
    if value != value or value <= 0 or value == float("inf"):
        raise InvalidAmountError(amount)
    rounded = int(round(value))
    if rounded <= 0:
        raise InvalidAmountError(amount)
    return rounded


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def booking_field_errors(data: Mapping[str, Any]) -> Tuple[List[str], List[str]]:
    """
    Check a wire-named booking mapping. Returns (messages, field names) for
    every problem found, not just the first.
    """
    errors, fields = [], []
    for wire, _ in REQUIRED_BOOKING_FIELDS:
        value = data.get(wire)
        if wire == "customerPhone":
            value = normalize_phone(value)
        if value is None or str(value).strip() == "":
            errors.append(f"{wire} is required")
            fields.append(wire)

    check_in, check_out = data.get("checkIn"), data.get("checkOut")
    parsed_in = _parse_date(check_in) if check_in else None
    parsed_out = _parse_date(check_out) if check_out else None
    if check_in and parsed_in is None:
        errors.append("checkIn must be an ISO date (YYYY-MM-DD)")
        fields.append("checkIn")
    if check_out and parsed_out is None:
        errors.append("checkOut must be an ISO date (YYYY-MM-DD)")
        fields.append("checkOut")
    if parsed_in and parsed_out and parsed_out <= parsed_in:
        errors.append("checkOut must be after checkIn")
        fields.append("checkOut")
    return errors, fields


def build_booking_fields(data: Mapping[str, Any], amount: Any) -> BookingFields:
    """Validate, normalize and clamp a wire-named booking mapping."""
    errors, fields = booking_field_errors(data)
    try:
        minor_units = parse_amount(amount)
    except InvalidAmountError as exc:
        errors = exc.errors + errors
        fields = exc.fields + fields
    if errors:
        raise ValidationError(errors, fields)

    return BookingFields(
        villa_name=str(data["villa"]).strip(),
        check_in=_parse_date(data["checkIn"]),
        check_out=_parse_date(data["checkOut"]),
        guests=clamp(data.get("guests"), MIN_GUESTS, MAX_GUESTS, MIN_GUESTS),
        extra_mattresses=clamp(data.get("extraMattresses"), MIN_MATTRESSES, MAX_MATTRESSES, MIN_MATTRESSES),
        customer_name=str(data["customerName"]).strip(),
        customer_email=str(data["customerEmail"]).strip(),
        customer_phone=normalize_phone(data["customerPhone"]),
        amount=minor_units,
    )
