from decimal import Decimal

from petshop.models import CartItem


def add(client, headers, product_id, quantity=1, path="/api/cart"):
    return client.post(path, json={"product_id": product_id, "quantity": quantity}, headers=headers)


def test_cart_requires_auth(client):
    assert client.get("/api/cart").status_code == 401


def test_repeated_adds_merge_into_one_row(client, db, customer, customer_headers, product):
    first = add(client, customer_headers, product.id, 2)
    assert first.status_code == 201
    assert first.json()["data"]["action"] == "added"

    second = add(client, customer_headers, product.id, 3, path="/api/cart/add")
    assert second.status_code == 200
    assert second.json()["data"]["action"] == "updated"
    assert second.json()["data"]["quantity"] == 5

    rows = db.query(CartItem).filter(CartItem.user_id == customer.id).all()
    assert len(rows) == 1
    assert rows[0].quantity == 5


def test_add_beyond_stock_counts_existing_quantity(client, customer_headers, product):
    add(client, customer_headers, product.id, 4)

    resp = add(client, customer_headers, product.id, 2)

    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "insufficient_stock"
    assert body["message"] == "Insufficient stock for Puppy Kibble. Available: 5, Requested: 6"


def test_add_missing_product(client, customer_headers):
    resp = add(client, customer_headers, 4242)

    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_add_inactive_product(client, customer_headers, make_product):
    product = make_product(is_active=False)

    resp = add(client, customer_headers, product.id)

    assert resp.status_code == 400
    assert resp.json()["error"] == "unavailable"


def test_add_zero_quantity_is_invalid(client, customer_headers, product):
    resp = add(client, customer_headers, product.id, 0)

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_get_cart_summary(client, customer_headers, make_product):
    kibble = make_product(name="Kibble", price="100000", stock=10)
    leash = make_product(name="Leash", price="45000.50", stock=10)
    add(client, customer_headers, kibble.id, 2)
    add(client, customer_headers, leash.id, 1)

    resp = client.get("/api/cart", headers=customer_headers)

    data = resp.json()["data"]
    assert {item["name"] for item in data["cart_items"]} == {"Kibble", "Leash"}
    assert data["summary"]["total_items"] == 3
    assert Decimal(data["summary"]["total_amount"]) == Decimal("245000.50")


def test_cart_shows_live_price(client, db, customer_headers, product):
    add(client, customer_headers, product.id, 1)

    product.price = Decimal("120000")
    db.commit()

    data = client.get("/api/cart", headers=customer_headers).json()["data"]
    assert Decimal(data["cart_items"][0]["price"]) == Decimal("120000")


def test_update_item(client, customer_headers, product):
    cart_item_id = add(client, customer_headers, product.id, 1).json()["data"]["cart_item_id"]

    ok = client.put(f"/api/cart/{cart_item_id}", json={"quantity": 4}, headers=customer_headers)
    assert ok.status_code == 200
    assert ok.json()["data"]["quantity"] == 4

    too_many = client.put(f"/api/cart/{cart_item_id}", json={"quantity": 6}, headers=customer_headers)
    assert too_many.status_code == 409

    zero = client.put(f"/api/cart/{cart_item_id}", json={"quantity": 0}, headers=customer_headers)
    assert zero.status_code == 400


def test_update_someone_elses_item(client, customer_headers, other_headers, product):
    cart_item_id = add(client, customer_headers, product.id, 1).json()["data"]["cart_item_id"]

    resp = client.put(f"/api/cart/{cart_item_id}", json={"quantity": 2}, headers=other_headers)

    assert resp.status_code == 404


def test_update_deactivated_product(client, db, customer_headers, product):
    cart_item_id = add(client, customer_headers, product.id, 1).json()["data"]["cart_item_id"]
    product.is_active = False
    db.commit()

    resp = client.put(f"/api/cart/{cart_item_id}", json={"quantity": 2}, headers=customer_headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "unavailable"


def test_remove_is_idempotent(client, customer_headers, product):
    cart_item_id = add(client, customer_headers, product.id, 1).json()["data"]["cart_item_id"]

    first = client.delete(f"/api/cart/{cart_item_id}", headers=customer_headers)
    second = client.delete(f"/api/cart/{cart_item_id}", headers=customer_headers)

    assert first.status_code == 200
    assert first.json()["data"]["deleted_items"] == 1
    assert second.status_code == 200
    assert second.json()["data"]["deleted_items"] == 0


def test_clear_only_touches_own_cart(client, db, other_customer, customer_headers, other_headers, make_product):
    kibble = make_product(name="Kibble", stock=10)
    leash = make_product(name="Leash", stock=10)
    add(client, customer_headers, kibble.id)
    add(client, customer_headers, leash.id)
    add(client, other_headers, kibble.id)

    resp = client.delete("/api/cart/clear", headers=customer_headers)
    assert resp.json()["data"]["deleted_items"] == 2

    again = client.delete("/api/cart", headers=customer_headers)
    assert again.json()["data"]["deleted_items"] == 0

    assert db.query(CartItem).filter(CartItem.user_id == other_customer.id).count() == 1


def test_cart_count(client, customer_headers, make_product):
    kibble = make_product(name="Kibble", stock=10)
    leash = make_product(name="Leash", stock=10)
    add(client, customer_headers, kibble.id, 3)
    add(client, customer_headers, leash.id, 2)

    resp = client.get("/api/cart/count", headers=customer_headers)

    assert resp.json()["data"]["total_items"] == 5


def test_bulk_add_reports_each_item(client, customer_headers, make_product):
    kibble = make_product(name="Kibble", stock=10)
    scarce = make_product(name="Scarce", stock=1)

    resp = client.post(
        "/api/cart/bulk-add",
        json={
            "items": [
                {"product_id": kibble.id, "quantity": 2},
                {"product_id": scarce.id, "quantity": 5},
                {"product_id": 9999, "quantity": 1},
            ]
        },
        headers=customer_headers,
    )

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is False
    assert [p["index"] for p in body["data"]["processed"]] == [0]
    assert [e["index"] for e in body["data"]["errors"]] == [1, 2]

    cart = client.get("/api/cart", headers=customer_headers).json()["data"]
    assert [item["name"] for item in cart["cart_items"]] == ["Kibble"]
