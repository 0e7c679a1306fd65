from conftest import make_game, register


def test_users_cannot_manage_catalog(client):
    register(client, "user@example.com")
    r = client.get("/api/merchant/games")
    assert r.status_code == 403
    assert r.json()["code"] == "AUTH_002"
    client.cookies.clear()
    assert client.get("/api/merchant/games").status_code == 401


def test_create_update_and_list(client):
    register(client, "m1@shop.com", "MERCHANT", "M1")
    game, sku = make_game(client)

    r = client.patch(f"/api/merchant/games/{game['id']}",
                     json={"bannerUrl": "https://cdn.example.com/b.png"})
    assert r.status_code == 200
    body = r.json()
    assert body["banner_url"] == "https://cdn.example.com/b.png"
    assert body["name"]["en"] == "Star Quest"

    r = client.patch(f"/api/merchant/skus/{sku['id']}",
                     json={"prices": {"usd": 1999}})
    assert r.status_code == 200
    assert r.json()["prices"] == {"usd": 1999}

    games = client.get("/api/merchant/games").json()["games"]
    assert len(games) == 1
    assert games[0]["analytics"] == {"total_orders": 0, "completed_orders": 0,
                                     "total_revenue": 0, "total_skus": 1}
    skus = client.get(f"/api/merchant/games/{game['id']}/skus").json()
    assert [s["id"] for s in skus["skus"]] == [sku["id"]]


def test_sku_validation(client):
    register(client, "m2@shop.com", "MERCHANT", "M2")
    game, _ = make_game(client)
    url = f"/api/merchant/games/{game['id']}/skus"
    name = {"en": "Coins", "zh": "金币"}
    assert client.post(url, json={"name": name,
                                  "prices": {"eur": 100}}).status_code == 422
    assert client.post(url, json={"name": name,
                                  "prices": {"usd": 1.5}}).status_code == 422
    assert client.post(url, json={"name": {"en": "Coins", "zh": " "},
                                  "prices": {"usd": 100}}).status_code == 422


def test_other_merchants_are_locked_out(client):
    register(client, "owner@shop.com", "MERCHANT", "Owner")
    game, sku = make_game(client)
    register(client, "rival@shop.com", "MERCHANT", "Rival")

    r = client.patch(f"/api/merchant/games/{game['id']}",
                     json={"bannerUrl": "/x.png"})
    assert r.status_code == 403
    assert client.delete(f"/api/merchant/skus/{sku['id']}").status_code == 403
    assert client.get(
        f"/api/merchant/games/{game['id']}/skus").status_code == 403
    assert client.delete("/api/merchant/games/nope").status_code == 404


def test_delete_sku_and_game(client):
    register(client, "m3@shop.com", "MERCHANT", "M3")
    game, sku = make_game(client)
    assert client.delete(f"/api/merchant/skus/{sku['id']}").status_code == 200
    assert client.delete(
        f"/api/merchant/games/{game['id']}").status_code == 200
    assert client.get("/api/merchant/games").json()["games"] == []


def test_game_with_orders_cannot_be_deleted(client, shop):
    r = client.post("/api/checkout", json={"skuId": shop["sku"]["id"]})
    assert r.status_code == 200

    client.post("/api/auth/login", json={"email": "seller@shop.com",
                                         "password": "password123"})
    r = client.delete(f"/api/merchant/games/{shop['game']['id']}")
    assert r.status_code == 409
    assert r.json()["message"] == "Cannot delete game with existing orders"
    r = client.delete(f"/api/merchant/skus/{shop['sku']['id']}")
    assert r.status_code == 409


def test_merchant_orders_and_overview(client, shop):
    client.post("/api/checkout", json={"skuId": shop["sku"]["id"]})
    client.post("/api/auth/login", json={"email": "seller@shop.com",
                                         "password": "password123"})
    r = client.get("/api/merchant/orders", params={"status": "pending"})
    assert r.status_code == 200
    body = r.json()
    assert body["pagination"]["total"] == 1
    assert body["orders"][0]["customer_email"] == "buyer@example.com"
    assert client.get("/api/merchant/orders",
                      params={"status": "bogus"}).status_code == 400

    overview = client.get("/api/merchant/overview").json()
    assert overview["total_games"] == 1
    assert overview["total_orders"] == 1
    assert overview["total_revenue"] == 0
    assert overview["conversion_rate"] == 0.0
