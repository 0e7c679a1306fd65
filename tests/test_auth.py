from conftest import PASSWORD, login, login_admin, register


def test_register_logs_in(client):
    user = register(client, "alice@example.com")
    assert user["role"] == "USER"
    r = client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "alice@example.com"


def test_register_merchant_needs_name(client):
    r = client.post("/api/auth/register", json={
        "email": "shop@example.com", "password": PASSWORD,
        "confirmPassword": PASSWORD, "role": "MERCHANT",
    })
    assert r.status_code == 422
    assert r.json()["code"] == "BIZ_001"

    m = register(client, "shop@example.com", "MERCHANT", "Shop")
    assert m["role"] == "MERCHANT" and m["merchant_name"] == "Shop"


def test_register_rejects_bad_input(client):
    r = client.post("/api/auth/register", json={
        "email": "bob@example.com", "password": PASSWORD,
        "confirmPassword": "different1",
    })
    assert r.status_code == 422
    r = client.post("/api/auth/register", json={
        "email": "not-an-email", "password": PASSWORD,
        "confirmPassword": PASSWORD,
    })
    assert r.status_code == 422


def test_duplicate_email_conflicts(client):
    register(client, "dup@example.com")
    r = client.post("/api/auth/register", json={
        "email": "DUP@example.com", "password": PASSWORD,
        "confirmPassword": PASSWORD,
    })
    assert r.status_code == 409
    assert r.json()["success"] is False


def test_login_and_logout(client):
    register(client, "carol@example.com")
    client.post("/api/auth/logout")
    assert client.get("/api/auth/me").status_code == 401

    r = client.post("/api/auth/login", json={"email": "carol@example.com",
                                             "password": "wrong-pass"})
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_003"

    user = login(client, "carol@example.com")
    assert user["email"] == "carol@example.com"
    assert client.get("/api/auth/me").status_code == 200


def test_unknown_email_looks_like_bad_password(client):
    r = client.post("/api/auth/login", json={"email": "ghost@example.com",
                                             "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_003"


def test_ensure_profile_infers_role_once(client):
    login_admin(client)
    body = {"userId": "ext-user-1", "email": "merchant.joe@example.com"}
    r = client.post("/api/auth/ensure-profile", json=body)
    assert r.status_code == 200
    assert r.json()["created"] is True
    assert r.json()["role"] == "MERCHANT"

    r = client.post("/api/auth/ensure-profile", json=body)
    assert r.json()["created"] is False


def test_ensure_profile_for_someone_else_is_denied(client):
    register(client, "dave@example.com")
    r = client.post("/api/auth/ensure-profile",
                    json={"userId": "other-id", "email": "x@example.com"})
    assert r.status_code == 403


def test_ensure_profile_needs_a_session(client):
    r = client.post("/api/auth/ensure-profile",
                    json={"userId": "squat-1", "email": "victim@example.com"})
    assert r.status_code == 401

    # the owner can still register the address afterwards
    user = register(client, "victim@example.com")
    assert user["role"] == "USER"


def test_ensure_profile_for_self(client):
    user = register(client, "erin@example.com")
    r = client.post("/api/auth/ensure-profile",
                    json={"userId": user["id"], "email": user["email"]})
    assert r.status_code == 200
    assert r.json()["created"] is False
    assert r.json()["role"] == "USER"
