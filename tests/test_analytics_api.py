import json

from conftest import login

from gamerecharge.mockpay import mock_event, mock_signature


def buy(c, sku_id, kind="succeeded"):
    s = c.post("/api/checkout", json={"skuId": sku_id}).json()
    body = json.dumps(mock_event(kind, s["session_id"], s["order_id"], 999,
                                 "usd")).encode()
    c.post("/payments/webhook", content=body,
           headers={"x-mockpay-signature": mock_signature(body)})
    return s["order_id"]


def test_dashboard(client, shop):
    buy(client, shop["sku"]["id"])
    buy(client, shop["sku"]["id"], "failed")
    login(client, "seller@shop.com")

    r = client.get("/api/merchant/analytics", params={"tz": "Asia/Shanghai"})
    assert r.status_code == 200
    d = r.json()
    assert d["total_revenue"] == 999
    assert d["total_orders"] == 2
    assert d["conversion_rate"] == 50.0
    assert d["today_orders"] == 2
    assert d["revenue_change"] == 100.0
    assert d["month_revenue_change"] == 100.0
    assert len(d["daily_sales"]) == 30
    assert sum(h["orders"] for h in d["hourly_sales"]) == 2
    assert d["top_skus"][0]["price"] == "$9.99"
    assert d["revenue_by_game"][0]["total_revenue"] == 999
    assert {r["status"] for r in d["order_status_breakdown"]} == {
        "completed", "failed"}
    assert all(o["customer_email"].startswith("Customer ")
               for o in d["recent_orders"])
    assert len(d["chart"]["labels"]) == 30


def test_unsupported_locale_falls_back_to_english(client, shop):
    buy(client, shop["sku"]["id"])
    login(client, "seller@shop.com")
    r = client.get("/api/merchant/analytics", params={"locale": "fr"})
    assert r.status_code == 200
    labels = r.json()["chart"]["labels"]
    assert labels and not any("月" in label for label in labels)

    r = client.get("/api/merchant/analytics/products",
                   params={"locale": "fr"})
    assert r.json()["skus"][0]["sku_name"] == "100 Gems"


def test_bad_timezone(client, shop):
    login(client, "seller@shop.com")
    r = client.get("/api/merchant/analytics", params={"tz": "Nowhere/City"})
    assert r.status_code == 400


def test_orders_overview(client, shop):
    buy(client, shop["sku"]["id"])
    login(client, "seller@shop.com")
    r = client.get("/api/merchant/analytics/orders",
                   params={"status": "completed"})
    assert r.status_code == 200
    body = r.json()
    assert body["total_count"] == 1
    assert body["summary"]["status_filter"] == "completed"
    assert body["orders"][0]["sku_name"] == "100 Gems"

    r = client.get("/api/merchant/analytics/orders",
                   params={"start": "2030-01-02", "end": "2030-01-01"})
    assert r.status_code == 400
    r = client.get("/api/merchant/analytics/orders",
                   params={"start": "last tuesday"})
    assert r.status_code == 400


def test_products_performance(client, shop):
    buy(client, shop["sku"]["id"])
    login(client, "seller@shop.com")
    r = client.get("/api/merchant/analytics/products",
                   params={"locale": "zh"})
    body = r.json()
    assert body["summary"]["total_skus"] == 1
    assert body["summary"]["top_performing_sku"]["revenue"] == 999
    assert body["skus"][0]["sku_name"] == "宝石"
    assert body["skus"][0]["completion_rate"] == 100.0


def test_revenue_series(client, shop):
    buy(client, shop["sku"]["id"])
    login(client, "seller@shop.com")
    r = client.get("/api/merchant/analytics/revenue",
                   params={"group_by": "month"})
    body = r.json()
    assert body["summary"]["total_revenue"] == 999
    assert body["summary"]["top_game"]["game_name"] == "Star Quest"
    assert body["revenue_data"][0]["period"].endswith("-01")

    r = client.get("/api/merchant/analytics/revenue",
                   params={"group_by": "year"})
    assert r.status_code == 400


def test_merchant_cannot_peek_at_others(client, shop):
    buy(client, shop["sku"]["id"])
    seller_id = shop["merchant"]["id"]
    client.post("/api/auth/register", json={
        "email": "nosy@shop.com", "password": "password123",
        "confirmPassword": "password123", "role": "MERCHANT",
        "merchantName": "Nosy"})
    r = client.get("/api/merchant/analytics",
                   params={"merchant_id": seller_id})
    assert r.json()["total_orders"] == 0


def test_products_filter_checks_game_ownership(client, shop):
    gid = shop["game"]["id"]
    login(client, "seller@shop.com")
    r = client.get("/api/merchant/analytics/products",
                   params={"game_id": gid})
    assert r.json()["summary"]["game_filter"] == gid

    client.post("/api/auth/register", json={
        "email": "rival@shop.com", "password": "password123",
        "confirmPassword": "password123", "role": "MERCHANT",
        "merchantName": "Rival"})
    r = client.get("/api/merchant/analytics/products",
                   params={"game_id": gid})
    assert r.status_code == 403
    r = client.get("/api/merchant/analytics/products",
                   params={"game_id": "missing"})
    assert r.status_code == 404
