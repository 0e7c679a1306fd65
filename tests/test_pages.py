from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, login


def test_landing_and_game_pages(client, shop):
    r = client.get("/")
    assert r.status_code == 200
    assert "Star Quest" in r.text

    r = client.get(f"/zh/games/{shop['game']['id']}")
    assert r.status_code == 200
    assert "星际任务" in r.text and "US$9.99" in r.text

    assert client.get(f"/fr/games/{shop['game']['id']}").status_code == 404


def test_orders_page_needs_login(client):
    r = client.get("/en/orders", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/auth?next=/en/orders"


def test_form_login_redirects_by_role(client):
    r = client.post("/auth", data={"email": ADMIN_EMAIL,
                                   "password": "wrong", "next": "/dashboard"})
    assert r.status_code == 401

    r = client.post("/auth", data={"email": ADMIN_EMAIL,
                                   "password": ADMIN_PASSWORD,
                                   "next": "//evil.example.com"},
                    follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard"

    r = client.get("/dashboard", follow_redirects=False)
    assert r.headers["location"] == "/dashboard/admin"
    r = client.get("/dashboard/admin")
    assert r.status_code == 200


def test_merchant_dashboard_page(client, shop):
    login(client, "seller@shop.com")
    r = client.get("/dashboard", follow_redirects=False)
    assert r.headers["location"] == "/dashboard/merchant"
    r = client.get("/dashboard/merchant")
    assert r.status_code == 200
    assert "Seller Co" in r.text


def test_payment_result_pages(client, shop):
    s = client.post("/api/checkout", json={"skuId": shop["sku"]["id"]}).json()
    r = client.get("/en/payment/success",
                   params={"session_id": s["session_id"]})
    assert r.status_code == 200
    assert "$9.99" in r.text

    r = client.get("/en/payment/cancel",
                   params={"status": "failed", "game_id": shop["game"]["id"]})
    assert r.status_code == 200
    assert f"/en/games/{shop['game']['id']}" in r.text
