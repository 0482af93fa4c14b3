from conftest import TEST_PASSWORD


def register(client, **overrides):
    payload = {
        "full_name": "Jamie Doe",
        "email": "Jamie@Example.com",
        "password": "hunter22",
        "phone": "08123456789",
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


def test_register_returns_user_and_token(client):
    resp = register(client)

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["user"]["email"] == "jamie@example.com"
    assert body["data"]["user"]["role"] == "customer"
    assert "hashed_password" not in body["data"]["user"]
    assert body["data"]["token"]


def test_register_duplicate_email_conflicts(client):
    register(client)
    resp = register(client, email="jamie@example.com")

    assert resp.status_code == 409
    assert resp.json()["error"] == "conflict"


def test_register_rejects_short_password(client):
    resp = register(client, password="123")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_error"
    assert any(e["field"] == "password" for e in body["errors"])


def test_login_and_me(client, customer):
    resp = client.post(
        "/api/auth/login",
        json={"email": "customer@example.com", "password": TEST_PASSWORD},
    )
    assert resp.status_code == 200
    token = resp.json()["data"]["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["id"] == customer.id


def test_login_wrong_password(client, customer):
    resp = client.post(
        "/api/auth/login",
        json={"email": "customer@example.com", "password": "nope-nope"},
    )

    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized"


def test_login_disabled_account(client, make_user):
    make_user("sleepy@example.com", is_active=False)

    resp = client.post(
        "/api/auth/login",
        json={"email": "sleepy@example.com", "password": TEST_PASSWORD},
    )

    assert resp.status_code == 401
    assert resp.json()["message"] == "Account disabled"


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")

    assert resp.status_code == 401
    assert resp.json() == {
        "success": False,
        "error": "unauthorized",
        "message": "No token provided",
    }


def test_me_rejects_garbage_token(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid token"


def test_expired_token(client, customer, settings):
    from datetime import timedelta

    from petshop.security import create_access_token

    token = create_access_token(
        {"sub": customer.email, "user_id": customer.id, "role": "customer"},
        settings,
        expires_delta=timedelta(minutes=-5),
    )
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert resp.json()["message"] == "Token expired"


def test_refresh_issues_new_token(client, customer_headers):
    resp = client.post("/api/auth/refresh", headers=customer_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["token"]


def test_update_profile(client, customer_headers):
    resp = client.put(
        "/api/auth/me",
        json={"full_name": "Casey Renamed", "phone": "0800"},
        headers=customer_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["full_name"] == "Casey Renamed"
    assert resp.json()["data"]["phone"] == "0800"


def test_change_password(client, customer, customer_headers):
    wrong = client.put(
        "/api/auth/password",
        json={"current_password": "wrong-one", "new_password": "brandnew1"},
        headers=customer_headers,
    )
    assert wrong.status_code == 400

    ok = client.put(
        "/api/auth/password",
        json={"current_password": TEST_PASSWORD, "new_password": "brandnew1"},
        headers=customer_headers,
    )
    assert ok.status_code == 200

    login = client.post(
        "/api/auth/login",
        json={"email": customer.email, "password": "brandnew1"},
    )
    assert login.status_code == 200


def test_admin_route_forbidden_for_customer(client, customer_headers):
    resp = client.get("/api/products/stats", headers=customer_headers)

    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"
