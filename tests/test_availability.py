from datetime import date

import pytest

from availability import find_clashes, overlaps, villa_slug
from booking_schemas import BookingFields, BookingRecord, BookingStatus
from errors import ValidationError


def book(store, villa, check_in, check_out, status=BookingStatus.PENDING):
    handle = store.create_booking(BookingFields(
        villa_name=villa,
        check_in=date.fromisoformat(check_in),
        check_out=date.fromisoformat(check_out),
        customer_name="Guest",
        customer_email="guest@example.com",
        customer_phone="919000000000",
        amount=1000000,
    ))
    if status is not BookingStatus.PENDING:
        store.update_status(handle, status)
    return handle


def test_villa_slug():
    assert villa_slug("La Villa Grande") == "la-villa-grande"
    assert villa_slug("  Casa  Mia! ") == "casa-mia"


def test_stays_are_half_open():
    existing = BookingRecord(id="p", villa_name="Casa Mia", check_in=date(2026, 12, 20), check_out=date(2026, 12, 24),
                             customer_name="x", customer_email="x@example.com", customer_phone="1", amount=1)

    assert overlaps(date(2026, 12, 23), date(2026, 12, 26), existing)
    assert overlaps(date(2026, 12, 18), date(2026, 12, 28), existing)
    assert not overlaps(date(2026, 12, 24), date(2026, 12, 26), existing)
    assert not overlaps(date(2026, 12, 17), date(2026, 12, 20), existing)


def test_find_clashes_rejects_inverted_range(store):
    with pytest.raises(ValidationError):
        find_clashes(store, "Casa Mia", date(2026, 12, 24), date(2026, 12, 24))


def test_overlapping_booking_blocks_range(client, store):
    book(store, "Casa Mia", "2026-12-20", "2026-12-24")

    response = client.post("/api/availability", json={
        "villaId": "casa-mia", "checkIn": "2026-12-22", "checkOut": "2026-12-27",
    })

    assert response.status_code == 200
    assert response.json() == {
        "available": False,
        "bookedDates": [{"checkIn": "2026-12-20", "checkOut": "2026-12-24"}],
    }


def test_back_to_back_stay_is_available(client, store):
    book(store, "Casa Mia", "2026-12-20", "2026-12-24")

    response = client.post("/api/availability", json={
        "villaId": "Casa Mia", "checkIn": "2026-12-24", "checkOut": "2026-12-27",
    })

    assert response.json() == {"available": True, "bookedDates": []}


def test_failed_bookings_and_other_villas_do_not_block(client, store):
    book(store, "Casa Mia", "2026-12-20", "2026-12-24", status=BookingStatus.FAILED)
    book(store, "La Villa Grande", "2026-12-20", "2026-12-24")

    response = client.post("/api/availability", json={
        "villaId": "casa-mia", "checkIn": "2026-12-21", "checkOut": "2026-12-23",
    })

    assert response.json()["available"] is True


def test_missing_parameters(client):
    response = client.post("/api/availability", json={"villaId": "casa-mia"})

    assert response.status_code == 400
    assert response.json()["details"] == ["Missing required parameters: checkIn, checkOut"]


def test_check_out_must_follow_check_in(client):
    response = client.post("/api/availability", json={
        "villaId": "casa-mia", "checkIn": "2026-12-24", "checkOut": "2026-12-20",
    })

    assert response.status_code == 400


def test_blocked_ranges_are_sorted(client, store):
    book(store, "Casa Mia", "2027-01-10", "2027-01-12", status=BookingStatus.COMPLETED)
    book(store, "Casa Mia", "2026-12-20", "2026-12-24")
    book(store, "Casa Mia", "2026-12-26", "2026-12-28", status=BookingStatus.FAILED)

    response = client.post("/api/availability/blocked", json={"villaId": "casa-mia"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "blockedRanges": [
            {"start": "2026-12-20", "end": "2026-12-24", "status": "pending"},
            {"start": "2027-01-10", "end": "2027-01-12", "status": "completed"},
        ],
    }


def test_blocked_requires_villa(client):
    response = client.post("/api/availability/blocked", json={})

    assert response.status_code == 400
