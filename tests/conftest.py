import pytest
from fastapi.testclient import TestClient

from config import Settings
from fakes import KEY_ID, KEY_SECRET, WEBHOOK_SECRET, FakeNotionClient, FakeRazorpayClient
from payments.checkout import CheckoutService
from payments.gateway import RazorpayGateway
from persistence.db import build_engine, init_db, make_session_factory
from persistence.notion_store import NotionBookingStore
from server import create_app
from txn_manager import SideEffectRunner


@pytest.fixture
def calls():
    return []


@pytest.fixture
def razorpay_client(calls):
    return FakeRazorpayClient(calls)


@pytest.fixture
def notion_client(calls):
    return FakeNotionClient(calls)


@pytest.fixture
def gateway(razorpay_client):
    return RazorpayGateway(KEY_ID, KEY_SECRET, client=razorpay_client)


@pytest.fixture
def store(notion_client):
    return NotionBookingStore("secret_notion", "bookings-db", client=notion_client)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def side_effects(session_factory):
    return SideEffectRunner(session_factory)


@pytest.fixture
def checkout(gateway, store, side_effects):
    return CheckoutService(gateway, store, side_effects)


@pytest.fixture
def settings():
    return Settings(
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        notion_api_key="secret_notion",
        notion_database_id="bookings-db",
        app_url="http://localhost:3000",
    )


@pytest.fixture
def app(settings, gateway, store, side_effects):
    return create_app(settings, gateway=gateway, store=store, side_effects=side_effects)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def valid_notes():
    return {
        "villa": "Casa Mia",
        "checkIn": "2026-12-20",
        "checkOut": "2026-12-24",
        "customerName": "Asha Rao",
        "customerEmail": "asha@example.com",
        "customerPhone": "+91 98765-43210",
        "guests": 4,
        "extraMattresses": 1,
    }
