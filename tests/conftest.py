"""Pytest fixtures for the storefront API tests."""

import hashlib
import hmac

import pytest

from app import create_app
from models import Product
from payments import RazorpayGateway

RAZORPAY_SECRET = "test_secret"
WEBHOOK_TOKEN = "hook-token"


@pytest.fixture
def app():
    """App backed by a fresh in-memory database."""
    app = create_app(
        {
            "TESTING": True,
            "DATABASE_URL": "sqlite://",
            "SECRET_KEY": "test-secret-key",
            "BCRYPT_ROUNDS": 4,
            "RAZORPAY_KEY_ID": "rzp_test_key",
            "RAZORPAY_KEY_SECRET": RAZORPAY_SECRET,
            "MAIL_SUPPRESS_SEND": True,
            "MAIL_DEFAULT_SENDER": "shop@example.com",
            "SHIPROCKET_EMAIL": None,
            "SHIPROCKET_PASSWORD": None,
            "SHIPROCKET_WEBHOOK_TOKEN": WEBHOOK_TOKEN,
        }
    )
    yield app
    app.extensions["db_engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    """A session outside any request; call ``expire_all`` before re-reading rows."""
    session = app.extensions["db_sessionmaker"](expire_on_commit=True)
    yield session
    session.close()


@pytest.fixture
def make_product(db):
    def make(**kwargs):
        kwargs.setdefault("name", "Rose Quartz Bracelet")
        kwargs.setdefault("price", 500.0)
        kwargs.setdefault("stock", 10)
        product = Product(**kwargs)
        db.add(product)
        db.commit()
        return product

    return make


def signup(client, email="asha@example.com", name="Asha", password="password123"):
    resp = client.post(
        "/api/auth/signup", json={"name": name, "email": email, "password": password}
    )
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["user"]


@pytest.fixture
def customer(client):
    """Signed-up customer; ``client`` carries their session cookie."""
    return signup(client)


@pytest.fixture
def admin_headers(client):
    client.post(
        "/api/admin/auth/create",
        json={"email": "admin@example.com", "password": "adminpass123", "name": "Admin"},
    )
    resp = client.post(
        "/api/admin/auth/login", json={"email": "admin@example.com", "password": "adminpass123"}
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}


def sign(order_id, payment_id, secret=RAZORPAY_SECRET):
    return hmac.new(
        secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()


def payment_body(order_id="order_ABC", payment_id="pay_123", kind="order", data=None):
    return {
        "razorpayOrderId": order_id,
        "razorpayPaymentId": payment_id,
        "razorpaySignature": sign(order_id, payment_id),
        "type": kind,
        "data": data or {},
    }


class FakeOrders:
    """Stands in for the SDK's ``client.order`` resource."""

    def __init__(self):
        self.created = []

    def create(self, data):
        self.created.append(data)
        return {
            "id": f"order_test{len(self.created)}",
            "amount": data["amount"],
            "currency": data["currency"],
        }


@pytest.fixture
def gateway_orders(monkeypatch):
    orders = FakeOrders()
    real_init = RazorpayGateway.__init__

    def init(self, key_id, key_secret):
        real_init(self, key_id, key_secret)
        self.client.order = orders

    monkeypatch.setattr(RazorpayGateway, "__init__", init)
    return orders
