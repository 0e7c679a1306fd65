import os
import sqlite3
import tempfile

import pytest

_DB_FILE = os.path.join(tempfile.mkdtemp(prefix="gamerecharge-"), "test.db")

# must be set before the app modules are imported
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ["CHECKOUT_BACKEND"] = "sql"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["MOCK_SECRET"] = "test-secret"
os.environ["MOCK_WEBHOOK_URL"] = "http://127.0.0.1:9/payments/webhook"
os.environ["ADMIN_EMAIL"] = "root@example.com"
os.environ["ADMIN_PASSWORD"] = "rootpassword"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("STRIPE_WEBHOOK_SECRET", None)

from fastapi.testclient import TestClient  # noqa: E402

from gamerecharge.server import app  # noqa: E402

ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]
PASSWORD = "password123"

_TABLES = ("webhook_events", "checkout_pending", "checkout_sessions",
           "orders", "skus", "games")


@pytest.fixture(scope="session")
def app_client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def client(app_client):
    app_client.cookies.clear()
    yield app_client
    app_client.cookies.clear()
    conn = sqlite3.connect(_DB_FILE, timeout=10)
    try:
        for table in _TABLES:
            conn.execute(f"DELETE FROM {table}")
        conn.execute("DELETE FROM profiles WHERE email != ?", (ADMIN_EMAIL,))
        conn.commit()
    finally:
        conn.close()


def login(c, email, password=PASSWORD):
    c.cookies.clear()
    r = c.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["user"]


def register(c, email, role="USER", merchant_name=None):
    c.cookies.clear()
    body = {"email": email, "password": PASSWORD,
            "confirmPassword": PASSWORD, "role": role}
    if merchant_name:
        body["merchantName"] = merchant_name
    r = c.post("/api/auth/register", json=body)
    assert r.status_code == 201, r.text
    return r.json()["user"]


def login_admin(c):
    return login(c, ADMIN_EMAIL, ADMIN_PASSWORD)


def make_game(c, name="Star Quest", zh="星际任务", price=999, sku="100 Gems"):
    """Create a game with one SKU as the logged-in merchant."""
    r = c.post("/api/merchant/games", json={
        "name": {"en": name, "zh": zh},
        "description": {"en": f"{name} description", "zh": f"{zh} 描述"},
    })
    assert r.status_code == 201, r.text
    game = r.json()
    r = c.post(f"/api/merchant/games/{game['id']}/skus", json={
        "name": {"en": sku, "zh": "宝石"},
        "prices": {"USD": price},
    })
    assert r.status_code == 201, r.text
    return game, r.json()


@pytest.fixture
def shop(client):
    """A merchant with one game and SKU, and a logged-in buyer."""
    m = register(client, "seller@shop.com", "MERCHANT", "Seller Co")
    game, sku = make_game(client)
    buyer = register(client, "buyer@example.com")
    return {"merchant": m, "game": game, "sku": sku, "buyer": buyer}
