import json

from conftest import ADMIN_EMAIL, login_admin, register

from gamerecharge.mockpay import mock_event, mock_signature


def paid_order(c, shop):
    s = c.post("/api/checkout", json={"skuId": shop["sku"]["id"]}).json()
    body = json.dumps(mock_event("succeeded", s["session_id"], s["order_id"],
                                 999, "usd")).encode()
    r = c.post("/payments/webhook", content=body,
               headers={"x-mockpay-signature": mock_signature(body)})
    assert r.status_code == 200, r.text
    return s["order_id"]


def test_admin_routes_need_admin(client, shop):
    for path in ("/api/admin/merchants", "/api/admin/games",
                 "/api/admin/orders", "/api/admin/analytics",
                 "/api/admin/pending", "/api/test-payment"):
        assert client.get(path).status_code == 403, path


def test_bootstrap_admin_can_log_in(client):
    user = login_admin(client)
    assert user["email"] == ADMIN_EMAIL and user["role"] == "ADMIN"


def test_merchants_and_games_overview(client, shop):
    paid_order(client, shop)
    login_admin(client)
    merchants = client.get("/api/admin/merchants").json()["merchants"]
    seller = next(m for m in merchants if m["email"] == "seller@shop.com")
    assert seller["total_games"] == 1
    assert seller["analytics"]["total_revenue"] == 999
    assert seller["analytics"]["conversion_rate"] == 100.0

    games = client.get("/api/admin/games").json()["games"]
    assert games[0]["merchant_email"] == "seller@shop.com"
    assert games[0]["sku_count"] == 1
    assert games[0]["total_orders"] == 1


def test_create_merchant_and_change_roles(client):
    login_admin(client)
    r = client.post("/api/admin/merchants", json={
        "email": "new@shop.com", "merchantName": "New Shop",
        "password": "password123"})
    assert r.status_code == 201
    merchant = r.json()
    assert merchant["role"] == "MERCHANT"

    r = client.patch(f"/api/admin/profiles/{merchant['id']}/role",
                     json={"role": "USER"})
    assert r.json()["role"] == "USER" and r.json()["merchant_name"] is None

    r = client.patch(f"/api/admin/profiles/{merchant['id']}/role",
                     json={"role": "MERCHANT"})
    assert r.status_code == 400

    me = client.get("/api/auth/me").json()["user"]
    r = client.patch(f"/api/admin/profiles/{me['id']}/role",
                     json={"role": "USER"})
    assert r.status_code == 400
    r = client.patch("/api/admin/profiles/nobody/role", json={"role": "USER"})
    assert r.status_code == 404


def test_refund_rules(client, shop):
    order_id = paid_order(client, shop)
    pending = client.post("/api/checkout",
                          json={"skuId": shop["sku"]["id"]}).json()
    login_admin(client)

    url = f"/api/admin/orders/{pending['order_id']}/status"
    assert client.patch(url, json={"status": "refunded"}).status_code == 400

    url = f"/api/admin/orders/{order_id}/status"
    r = client.patch(url, json={"status": "refunded", "refundAmount": 5000})
    assert r.status_code == 400
    r = client.patch(url, json={"status": "refunded", "refundAmount": 500})
    assert r.status_code == 200
    assert r.json()["refund_amount"] == 500

    r = client.get("/api/admin/orders", params={"status": "refunded"})
    assert [o["id"] for o in r.json()["orders"]] == [order_id]


def test_manual_completion_sets_paid_at(client, shop):
    pending = client.post("/api/checkout",
                          json={"skuId": shop["sku"]["id"]}).json()
    login_admin(client)
    r = client.patch(f"/api/admin/orders/{pending['order_id']}/status",
                     json={"status": "completed"})
    assert r.status_code == 200
    assert r.json()["paid_at"] is not None


def test_platform_analytics(client, shop):
    paid_order(client, shop)
    client.post("/api/checkout", json={"skuId": shop["sku"]["id"]})
    login_admin(client)
    stats = client.get("/api/admin/analytics").json()
    assert stats["total_orders"] == 2
    assert stats["total_revenue"] == 999
    assert stats["unique_customers"] == 1
    assert stats["total_merchants"] == 1
    assert stats["order_status_breakdown"] == {
        "pending": 1, "completed": 1, "failed": 0, "refunded": 0}
    assert stats["average_order_value"] == 499.5


def test_pending_sessions_and_diagnostics(client, shop):
    s = client.post("/api/checkout", json={"skuId": shop["sku"]["id"]}).json()
    login_admin(client)
    pending = client.get("/api/admin/pending").json()
    assert pending["total"] == 1
    assert pending["items"][0]["psid"] == s["session_id"]

    r = client.get("/api/test-payment").json()
    assert r["provider"] == "mock" and r["configured"] is True
    assert r["sample_sku"]["price"] == 999

    r = client.get("/api/test-connection").json()
    assert r["database"] == "ok"
    assert r["tables"]["games"] == 1


def test_register_cannot_claim_admin(client):
    r = client.post("/api/auth/register", json={
        "email": "sneaky@example.com", "password": "password123",
        "confirmPassword": "password123", "role": "ADMIN"})
    assert r.status_code == 422
    register(client, "plain@example.com")
    assert client.get("/api/admin/analytics").status_code == 403
