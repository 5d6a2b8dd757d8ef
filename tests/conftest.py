from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

import auth
import payments
from catalog import create_product
from database import ensure_indexes, get_db
from main import app
from schemas import ProductIn
from settings import Settings, get_settings

TEST_SETTINGS = Settings(
    _env_file=None,
    SECRET_KEY="test-secret",
    RAZORPAY_KEY_ID="rzp_test_key",
    RAZORPAY_KEY_SECRET="rzp_test_secret",
)

SHIPPING = {"address": "12 MG Road", "city": "Bengaluru", "postalCode": "560001", "country": "India"}


class FakeGateway:
    def __init__(self):
        self.calls = []
        self.fail = False

    def create_order(self, amount, currency, receipt, notes=None):
        if self.fail:
            raise payments.GatewayError("gateway down")
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        return {"id": f"order_test_{len(self.calls)}", "amount": amount, "currency": currency, "status": "created"}


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(auth, "pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


@pytest.fixture
def settings():
    return TEST_SETTINGS


@pytest.fixture
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    app.dependency_overrides[payments.get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register(client, name="Asha", email="asha@example.com", password="secret123"):
    resp = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["user"]


@pytest.fixture
def user_headers(client):
    return register(client)[0]


@pytest.fixture
def admin_headers(client, db):
    auth.create_admin(db, "admin@example.com", "Admin@123")
    resp = client.post("/auth/login", json={"email": "admin@example.com", "password": "Admin@123"})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def make_product(db):
    def _make(name="Whey Protein Isolate", price=2499, stock=10, category="Whey Protein", **kw):
        payload = ProductIn(
            name=name,
            description=kw.pop("description", f"{name} description"),
            price=price,
            stock=stock,
            category=category,
            images=kw.pop("images", [f"https://img.example.com/{name.replace(' ', '-')}.jpg"]),
            **kw,
        )
        product = create_product(db, payload)
        return str(product["_id"])
    return _make


def signed(order_id="order_abc", payment_id="pay_xyz", secret=TEST_SETTINGS.RAZORPAY_KEY_SECRET):
    return {
        "razorpayOrderId": order_id,
        "razorpayPaymentId": payment_id,
        "razorpaySignature": payments.compute_signature(order_id, payment_id, secret),
    }


def checkout_body(items, total, tax=0, shipping=0, payment_id="pay_xyz", **overrides):
    body = {
        **signed(payment_id=payment_id),
        "orderItems": items,
        "shippingAddress": SHIPPING,
        "taxPrice": tax,
        "shippingPrice": shipping,
        "totalPrice": total,
    }
    body.update(overrides)
    return body


def insert_order(db, user_id, created_at=None, **kw):
    now = created_at or datetime.now(timezone.utc)
    doc = {
        "user_id": user_id,
        "order_items": [{"name": "Creatine", "qty": 1, "price": 899.0, "product": "p1", "image": None}],
        "shipping_address": SHIPPING,
        "payment_method": "Razorpay",
        "payment_result": {"id": kw.pop("payment_id", "pay_1"), "status": "paid", "update_time": now.isoformat()},
        "items_price": 899.0,
        "tax_price": 0,
        "shipping_price": 0,
        "total_price": 899.0,
        "is_paid": True,
        "paid_at": now,
        "is_delivered": False,
        "delivered_at": None,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(kw)
    return str(db["order"].insert_one(doc).inserted_id)
