from decimal import Decimal

import pytest

from petshop.models import OrderStatus


@pytest.fixture
def place_order(client):
    def _place_order(headers, product, quantity=1):
        client.post(
            "/api/cart",
            json={"product_id": product.id, "quantity": quantity},
            headers=headers,
        )
        resp = client.post(
            "/api/orders/from-cart",
            json={"payment_method": "e-wallet", "shipping_address": "Jl. Burung No. 3, Surabaya"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.json()
        return resp.json()["data"]

    return _place_order


def set_status(client, headers, order_id, new_status):
    return client.put(f"/api/orders/{order_id}/status", json={"status": new_status}, headers=headers)


def test_customers_see_only_their_orders(
    client, customer_headers, other_headers, admin_headers, make_product, place_order
):
    kibble = make_product(name="Kibble", stock=10)
    mine = place_order(customer_headers, kibble)
    place_order(other_headers, kibble)

    own = client.get("/api/orders", headers=customer_headers).json()["data"]
    assert [o["id"] for o in own["orders"]] == [mine["id"]]
    assert own["orders"][0]["items"][0]["product_name"] == "Kibble"

    everything = client.get("/api/orders", headers=admin_headers).json()["data"]
    assert everything["pagination"]["total"] == 2


def test_order_list_filters_by_status(client, customer_headers, make_product, place_order):
    kibble = make_product(name="Kibble", stock=10)
    first = place_order(customer_headers, kibble)
    place_order(customer_headers, kibble)
    client.post(f"/api/orders/{first['id']}/cancel", json={}, headers=customer_headers)

    resp = client.get("/api/orders?status=cancelled", headers=customer_headers)

    assert [o["id"] for o in resp.json()["data"]["orders"]] == [first["id"]]


def test_other_customers_order_is_not_found(client, customer_headers, other_headers, product, place_order):
    order = place_order(customer_headers, product)

    resp = client.get(f"/api/orders/{order['id']}", headers=other_headers)

    assert resp.status_code == 404


def test_admin_moves_order_through_fulfilment(client, customer_headers, admin_headers, product, place_order):
    order = place_order(customer_headers, product)

    for new_status in ("confirmed", "processing", "shipped", "delivered"):
        resp = set_status(client, admin_headers, order["id"], new_status)
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == new_status


def test_customer_cannot_change_status(client, customer_headers, product, place_order):
    order = place_order(customer_headers, product)

    resp = set_status(client, customer_headers, order["id"], "shipped")

    assert resp.status_code == 403


@pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
@pytest.mark.parametrize("attempt", ["pending", "shipped", "delivered", "cancelled"])
def test_terminal_orders_are_locked(
    client, customer_headers, admin_headers, product, place_order, terminal, attempt
):
    order = place_order(customer_headers, product)
    assert set_status(client, admin_headers, order["id"], terminal).status_code == 200

    resp = set_status(client, admin_headers, order["id"], attempt)

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_transition"
    current = client.get(f"/api/orders/{order['id']}", headers=admin_headers).json()["data"]
    assert current["status"] == terminal


def test_status_change_to_cancelled_restores_stock(
    client, db, customer_headers, admin_headers, product, place_order
):
    order = place_order(customer_headers, product, quantity=2)
    db.refresh(product)
    assert product.stock_quantity == 3

    resp = set_status(client, admin_headers, order["id"], "cancelled")

    assert resp.status_code == 200
    db.refresh(product)
    assert product.stock_quantity == 5


def test_owner_cancels_order(client, db, customer_headers, product, place_order):
    order = place_order(customer_headers, product, quantity=3)

    resp = client.post(
        f"/api/orders/{order['id']}/cancel",
        json={"reason": "Ordered the wrong size"},
        headers=customer_headers,
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == OrderStatus.CANCELLED.value
    assert "\nCancellation reason: Ordered the wrong size" in data["notes"]
    assert "\nCancelled on: " in data["notes"]

    db.refresh(product)
    assert product.stock_quantity == 5

    again = client.post(f"/api/orders/{order['id']}/cancel", headers=customer_headers)
    assert again.status_code == 400
    assert again.json()["error"] == "invalid_transition"

    db.refresh(product)
    assert product.stock_quantity == 5


def test_delivered_order_cannot_be_cancelled(client, customer_headers, admin_headers, product, place_order):
    order = place_order(customer_headers, product)
    set_status(client, admin_headers, order["id"], "delivered")

    resp = client.post(f"/api/orders/{order['id']}/cancel", headers=customer_headers)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Delivered orders cannot be cancelled"


def test_stranger_cannot_cancel(client, customer_headers, other_headers, product, place_order):
    order = place_order(customer_headers, product)

    resp = client.post(f"/api/orders/{order['id']}/cancel", headers=other_headers)

    assert resp.status_code == 404


def test_invoice(client, customer, customer_headers, product, place_order):
    order = place_order(customer_headers, product, quantity=2)

    resp = client.get(f"/api/orders/{order['id']}/invoice", headers=customer_headers)

    data = resp.json()["data"]
    assert data["customer"]["email"] == customer.email
    details = data["invoice_details"]
    assert Decimal(details["subtotal"]) == Decimal("200000")
    assert Decimal(details["tax"]) == Decimal("22000")
    assert Decimal(details["shipping"]) == Decimal("25000")
    assert Decimal(details["total"]) == Decimal("247000")


def test_admin_sets_payment_status(client, customer_headers, admin_headers, product, place_order):
    order = place_order(customer_headers, product)

    resp = client.put(
        f"/api/orders/{order['id']}/payment-status",
        json={"payment_status": "refunded"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["payment_status"] == "refunded"

    bad = client.put(
        f"/api/orders/{order['id']}/payment-status",
        json={"payment_status": "maybe"},
        headers=admin_headers,
    )
    assert bad.status_code == 400


def test_order_stats(client, customer_headers, admin_headers, make_product, place_order):
    kibble = make_product(name="Kibble", stock=10)
    leash = make_product(name="Leash", price="50000", stock=10)
    place_order(customer_headers, kibble, quantity=3)
    cancelled = place_order(customer_headers, leash, quantity=1)
    client.post(f"/api/orders/{cancelled['id']}/cancel", headers=customer_headers)

    resp = client.get("/api/orders/stats?period=year", headers=admin_headers)

    assert resp.status_code == 200
    stats = resp.json()["data"]
    assert stats["period"] == "year"
    assert {row["status"]: row["count"] for row in stats["status_summary"]} == {
        "pending": 1,
        "cancelled": 1,
    }
    assert stats["top_products"][0]["name"] == "Kibble"
    assert stats["top_products"][0]["total_sold"] == 3
    assert stats["revenue_summary"]["total_orders"] == 2
    assert Decimal(stats["revenue_summary"]["paid_revenue"]) == Decimal("0")


def test_order_stats_rejects_unknown_period(client, admin_headers):
    resp = client.get("/api/orders/stats?period=decade", headers=admin_headers)

    assert resp.status_code == 400
