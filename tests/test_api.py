import httpx
import pytest
import requests
from fastapi.testclient import TestClient

from fakes import sign
from server import create_app


def order_body(notes, amount=4999900, currency="INR"):
    return {"amount": amount, "currency": currency, "notes": notes}


def test_health(client):
    for path in ("/health", "/api/health"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["timestamp"]


def test_create_order_returns_order_and_pending_booking(client, store, valid_notes):
    response = client.post("/api/payments/orders", json=order_body(valid_notes))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["amount"] == 4999900
    assert body["currency"] == "INR"
    assert body["orderId"].startswith("order_")
    assert store.get_booking(body["bookingId"]).status.value == "pending"


def test_currency_defaults_to_inr(client, valid_notes):
    response = client.post("/api/payments/orders", json={"amount": 150000, "notes": valid_notes})

    assert response.status_code == 200
    assert response.json()["currency"] == "INR"


def test_bad_signature_is_rejected_and_booking_failed(client, store, valid_notes):
    created = client.post("/api/payments/orders", json=order_body(valid_notes)).json()

    response = client.post("/api/payments/verify", json={
        "razorpay_order_id": created["orderId"],
        "razorpay_payment_id": "pay_123",
        "razorpay_signature": "f" * 64,
        "bookingId": created["bookingId"],
    })

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["error"] == "Payment verification failed"
    assert store.get_booking(created["bookingId"]).status.value == "failed"


def test_gateway_outage_fails_booking(client, razorpay_client, notion_client, valid_notes):
    razorpay_client.order.fail_with = requests.exceptions.ConnectionError("connection refused")

    response = client.post("/api/payments/orders", json=order_body(valid_notes))

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Failed to create order"
    assert body["details"]["code"] == "NETWORK_ERROR"
    (page_id,) = notion_client.pages.pages
    assert notion_client.pages.status_of(page_id) == "Failed"


@pytest.mark.parametrize("path", ["/api/payments/verify", "/api/payments/verify-payment"])
def test_valid_signature_completes_booking(client, store, valid_notes, path):
    created = client.post("/api/payments/orders", json=order_body(valid_notes)).json()

    response = client.post(path, json={
        "razorpay_order_id": created["orderId"],
        "razorpay_payment_id": "pay_9",
        "razorpay_signature": sign(created["orderId"], "pay_9"),
        "bookingId": created["bookingId"],
    })

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Payment verified successfully",
        "paymentId": "pay_9",
        "orderId": created["orderId"],
        "bookingId": created["bookingId"],
    }
    assert store.get_booking(created["bookingId"]).status.value == "completed"


def test_missing_fields_are_all_reported(client, calls, valid_notes):
    del valid_notes["customerEmail"]
    del valid_notes["customerPhone"]

    response = client.post("/api/payments/orders", json=order_body(valid_notes))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert any("customerEmail" in d for d in body["details"])
    assert any("customerPhone" in d for d in body["details"])
    assert calls == []


def test_malformed_body_is_a_validation_error(client, calls):
    response = client.post("/api/payments/orders", json={"amount": 100, "notes": "villa please"})

    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"
    assert calls == []


def test_missing_verification_fields(client):
    response = client.post("/api/payments/verify", json={"razorpay_order_id": "order_1"})

    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"
    (detail,) = response.json()["details"]
    assert "razorpay_payment_id" in detail and "razorpay_signature" in detail


def test_store_outage_reports_booking_failure(client, notion_client, calls, valid_notes):
    notion_client.pages.fail_create = httpx.ConnectError("notion unreachable")

    response = client.post("/api/payments/orders", json=order_body(valid_notes))

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to create booking"
    assert "gateway.create_order" not in calls


def _explode(*args, **kwargs):
    raise RuntimeError("disk on fire")


def test_unexpected_error_includes_details_outside_production(app, monkeypatch, valid_notes):
    monkeypatch.setattr(app.state.checkout, "create_checkout", _explode)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.post("/api/payments/orders", json=order_body(valid_notes))

    assert response.status_code == 500
    assert response.json()["error"] == "Internal Server Error"
    assert response.json()["details"] == "disk on fire"
    assert "stack" in response.json()


def test_unexpected_error_hides_details_in_production(settings, gateway, store, side_effects,
                                                      monkeypatch, valid_notes):
    prod = settings.model_copy(update={"environment": "production"})
    app = create_app(prod, gateway=gateway, store=store, side_effects=side_effects)
    monkeypatch.setattr(app.state.checkout, "create_checkout", _explode)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.post("/api/payments/orders", json=order_body(valid_notes))

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal Server Error"}


def test_unknown_route_is_404(client):
    assert client.get("/api/nothing-here").status_code == 404


def test_odd_guest_counts_are_clamped_not_rejected(client, store, valid_notes):
    notes = dict(valid_notes, guests="abc", extraMattresses=12.5)

    response = client.post("/api/payments/orders", json=order_body(notes))

    assert response.status_code == 200
    record = store.get_booking(response.json()["bookingId"])
    assert record.guests == 1
    assert record.extra_mattresses == 5


def test_bad_currency_is_reported_with_missing_fields(client, calls):
    response = client.post("/api/payments/orders", json={"amount": 1000, "currency": "US", "notes": {}})

    assert response.status_code == 400
    details = response.json()["details"]
    assert details[0] == "Currency must be a 3-letter code"
    assert len(details) == 7
    assert calls == []


def test_verify_rejects_signature_for_another_order(client, store, valid_notes):
    cheap = client.post("/api/payments/orders", json=order_body(dict(valid_notes, villa="Tiny Hut"), amount=100)).json()
    villa = client.post("/api/payments/orders", json=order_body(valid_notes)).json()

    response = client.post("/api/payments/verify", json={
        "razorpay_order_id": cheap["orderId"],
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": sign(cheap["orderId"], "pay_1"),
        "bookingId": villa["bookingId"],
    })

    assert response.status_code == 400
    assert response.json()["error"] == "Payment verification failed"
    assert store.get_booking(villa["bookingId"]).status.value == "pending"
