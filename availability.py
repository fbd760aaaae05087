import re
from datetime import date
from typing import Iterable, List

import structlog
from fastapi import APIRouter, Request

from booking_schemas import (
    AvailabilityRequest,
    AvailabilityResponse,
    BlockedDatesResponse,
    BlockedRange,
    BookedRange,
    BookingRecord,
    BookingStatus,
)
from errors import ValidationError

router = APIRouter(prefix="/api/availability", tags=["availability"])

logger = structlog.get_logger(component="availability")


def villa_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")


def holding_bookings(bookings: Iterable[BookingRecord], villa: str) -> List[BookingRecord]:
    """Bookings of `villa` (matched by name or slug) that still hold their dates."""
    slug = villa_slug(villa)
    return [
        b for b in bookings
        if b.status is not BookingStatus.FAILED and villa_slug(b.villa_name) == slug
    ]


def overlaps(check_in: date, check_out: date, booking: BookingRecord) -> bool:
    # stays are half-open: a check-out day can be the next guest's check-in day
    return check_in < booking.check_out and booking.check_in < check_out


def find_clashes(store, villa: str, check_in: date, check_out: date) -> List[BookingRecord]:
    """Return the bookings that clash with the range; an empty list means available."""
    if check_out <= check_in:
        raise ValidationError(["checkOut must be after checkIn"], fields=["checkOut"])
    return [b for b in holding_bookings(store.list_bookings(), villa) if overlaps(check_in, check_out, b)]


@router.post("", response_model=AvailabilityResponse)
def check_availability(body: AvailabilityRequest, request: Request):
    missing = [name for name, value in (
        ("villaId", body.villa_id), ("checkIn", body.check_in), ("checkOut", body.check_out)
    ) if not value]
    if missing:
        raise ValidationError(["Missing required parameters: " + ", ".join(missing)], fields=missing)

    clashes = find_clashes(request.app.state.store, body.villa_id, body.check_in, body.check_out)
    logger.info("availability_checked", villa=body.villa_id, check_in=str(body.check_in),
                check_out=str(body.check_out), clashes=len(clashes))
    return AvailabilityResponse(
        available=not clashes,
        booked_dates=[BookedRange(check_in=b.check_in, check_out=b.check_out) for b in clashes],
    )


@router.post("/blocked", response_model=BlockedDatesResponse)
def blocked_dates(body: AvailabilityRequest, request: Request):
    if not body.villa_id:
        raise ValidationError(["Villa ID is required"], fields=["villaId"])

    bookings = holding_bookings(request.app.state.store.list_bookings(), body.villa_id)
    return BlockedDatesResponse(
        blocked_ranges=[
            BlockedRange(start=b.check_in, end=b.check_out, status=b.status.value)
            for b in sorted(bookings, key=lambda b: b.check_in)
        ],
    )
