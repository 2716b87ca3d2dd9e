"""
HTTP surface: status codes, JSON error bodies and the main order flow.
"""

import pytest


def _create_customer(client, name="Casey"):
    resp = client.post("/api/customers", json={"name": name})
    assert resp.status_code == 201
    return resp.get_json()


def _create_product(client, name="House Blend", stock_grams=100):
    resp = client.post("/api/products", json={"name": name, "price_per_gram_cents": 1000})
    assert resp.status_code == 201
    product = resp.get_json()
    if stock_grams:
        resp = client.post(
            f"/api/products/{product['id']}/adjustments",
            json={"type": "RESTOCK", "grams_delta": stock_grams, "note": "delivery"},
        )
        assert resp.status_code == 201
    return product


def _create_order(client, customer, product, grams, **extra):
    body = {
        "customer_id": customer["id"],
        "items": [{"product_id": product["id"], "quantity_grams": grams}],
        **extra,
    }
    return client.post("/api/orders", json=body)


# =============================================================================
# SYSTEM
# =============================================================================

def test_health(client, db_session):
    resp = client.get("/api/system/health")

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["checks"]["database"]["status"] == "healthy"
    assert data["backup_schema_version"] == 1


# =============================================================================
# CUSTOMERS
# =============================================================================

def test_create_and_fetch_customer(client, db_session):
    customer = _create_customer(client)

    assert customer["name"] == "Casey"
    assert customer["balance_due_cents"] == 0
    assert [t["tag"] for t in customer["tags"]] == ["NEW"]

    resp = client.get(f"/api/customers/{customer['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["id"] == customer["id"]


def test_unknown_customer_is_404(client, db_session):
    resp = client.get("/api/customers/does-not-exist")

    assert resp.status_code == 404
    assert "error" in resp.get_json()


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"name": "   "},
        {"name": "Casey", "balance": 10},
        {"name": "Casey", "default_fulfillment_method": "DRONE"},
    ],
)
def test_invalid_customer_is_400(client, db_session, body):
    resp = client.post("/api/customers", json=body)

    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_tag_routes(client, db_session):
    customer = _create_customer(client)

    resp = client.post(f"/api/customers/{customer['id']}/tags", json={"tag": "VIP", "reason": "regular"})
    assert resp.status_code == 201

    tags = client.get(f"/api/customers/{customer['id']}/tags").get_json()["items"]
    assert sorted(t["tag"] for t in tags) == ["NEW", "VIP"]

    resp = client.delete(f"/api/customers/{customer['id']}/tags/VIP")
    assert resp.get_json() == {"removed": True}


def test_carryover_route(client, db_session):
    customer = _create_customer(client)

    resp = client.post(f"/api/customers/{customer['id']}/carryover", json={"amount_cents": 2500})

    assert resp.status_code == 201
    assert resp.get_json()["balance_due_cents"] == 2500
    balance = client.get(f"/api/customers/{customer['id']}/balance").get_json()
    assert balance["balance_due_cents"] == 2500


# =============================================================================
# PRODUCTS
# =============================================================================

def test_product_adjustments(client, db_session):
    product = _create_product(client, stock_grams=50)

    available = client.get(f"/api/products/{product['id']}/available").get_json()
    assert available["available_grams"] == 50

    resp = client.post(
        f"/api/products/{product['id']}/adjustments",
        json={"type": "WASTE", "grams_delta": -80},
    )
    assert resp.status_code == 409

    rows = client.get(f"/api/products/{product['id']}/adjustments").get_json()["items"]
    assert len(rows) == 1


def test_product_price_validation(client, db_session):
    resp = client.post("/api/products", json={"name": "Bad", "price_per_gram_cents": -1})
    assert resp.status_code == 400


# =============================================================================
# ORDERS
# =============================================================================

def test_order_flow(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)

    resp = _create_order(client, customer, product, 5, initial_payment_cents=2000)
    assert resp.status_code == 201
    order = resp.get_json()
    assert order["status"] == "OPEN"
    assert order["balance_due_cents"] == 3000
    assert order["policy"]["applied_tier"] == "NORMAL"

    resp = client.post(f"/api/orders/{order['id']}/payments", json={"amount_cents": 1000, "method": "CARD"})
    assert resp.status_code == 201
    assert resp.get_json()["order"]["status"] == "PARTIAL"

    resp = client.post(f"/api/orders/{order['id']}/fulfillments", json={"event": "PICKED_UP"})
    assert resp.status_code == 201

    resp = client.post(f"/api/orders/{order['id']}/payments", json={"amount_cents": 2000})
    data = resp.get_json()["order"]
    assert data["status"] == "CLOSED"
    assert data["balance_due_cents"] == 0
    assert data["owed_remaining_grams"] == 0

    open_orders = client.get("/api/orders").get_json()["items"]
    assert open_orders == []


def test_cancel_route_and_terminal_conflict(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)
    order = _create_order(client, customer, product, 5).get_json()

    resp = client.post(f"/api/orders/{order['id']}/cancel")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "CANCELLED"
    available = client.get(f"/api/products/{product['id']}/available").get_json()
    assert available["available_grams"] == 100

    resp = client.post(f"/api/orders/{order['id']}/payments", json={"amount_cents": 100})
    assert resp.status_code == 409


def test_reservation_beyond_stock_is_409(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client, stock_grams=10)

    resp = _create_order(client, customer, product, 20)

    assert resp.status_code == 409
    assert "error" in resp.get_json()


def test_bad_payment_is_400(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)
    order = _create_order(client, customer, product, 1).get_json()

    resp = client.post(f"/api/orders/{order['id']}/payments", json={"amount_cents": -5})

    assert resp.status_code == 400


def test_quote(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)

    resp = client.post(
        "/api/orders/quote",
        json={
            "customer_id": customer["id"],
            "items": [{"product_id": product["id"], "quantity_grams": 10}],
            "paid_now_cents": 5000,
        },
    )

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["tier"] == "NORMAL"
    assert data["order_total_cents"] == 10_000
    assert data["deliver_now"]["deposit_min_cents"] == 4000
    assert data["deliver_now"]["meets_deposit_min"] is True
    # Nothing was saved
    assert client.get(f"/api/customers/{customer['id']}/orders").get_json()["items"] == []


def test_quote_with_bad_payment_is_400(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)

    resp = client.post(
        "/api/orders/quote",
        json={
            "customer_id": customer["id"],
            "items": [{"product_id": product["id"], "quantity_grams": 1}],
            "paid_now_cents": "abc",
        },
    )

    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_due_date_route(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)
    order = _create_order(client, customer, product, 2).get_json()

    resp = client.patch(f"/api/orders/{order['id']}/due-date", json={"due_at": "2030-01-15T23:59:59Z"})
    assert resp.status_code == 200
    assert resp.get_json()["due_at"] == "2030-01-15T23:59:59Z"

    resp = client.patch(f"/api/orders/{order['id']}/due-date", json={"due_at": None})
    assert resp.get_json()["due_at"] is None

    resp = client.patch(f"/api/orders/{order['id']}/due-date", json={})
    assert resp.status_code == 400


# =============================================================================
# SETTINGS
# =============================================================================

def test_settings_routes(client, db_session):
    assert client.get("/api/settings").get_json()["holdback_pct_normal"] == 0.10

    resp = client.patch("/api/settings", json={"holdback_pct_normal": 0.2})
    assert resp.status_code == 200
    assert resp.get_json()["holdback_pct_normal"] == 0.2

    resp = client.patch("/api/settings", json={"holdback_pct_normal": 2})
    assert resp.status_code == 400


# =============================================================================
# BACKUP
# =============================================================================

def test_backup_routes(client, db_session):
    customer = _create_customer(client)
    product = _create_product(client)
    _create_order(client, customer, product, 2)

    exported = client.get("/api/backup/export").get_json()
    assert len(exported["orders"]) == 1

    resp = client.post("/api/backup/clear")
    assert resp.status_code == 400

    resp = client.post("/api/backup/clear?confirm=true")
    assert resp.status_code == 200
    assert client.get("/api/customers").get_json()["items"] == []

    resp = client.post("/api/backup/import?mode=replace", json=exported)
    assert resp.status_code == 200
    assert resp.get_json()["counts"]["orders"] == 1
    assert client.get(f"/api/customers/{customer['id']}").status_code == 200


def test_backup_import_rejects_newer_schema(client, db_session):
    exported = client.get("/api/backup/export").get_json()
    exported["schemaVersion"] = 99

    resp = client.post("/api/backup/import", json=exported)

    assert resp.status_code == 400
