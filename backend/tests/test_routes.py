"""
HTTP-level tests: status codes and response shapes of the register API.
"""

from datetime import timedelta

from modernpos.time_utils import utcnow


def _create_product(client, sku="API-1", price_cents=1000, opening_stock=5, **extra):
    body = {"sku": sku, "name": f"Product {sku}", "price_cents": price_cents, "opening_stock": opening_stock}
    body.update(extra)
    return client.post("/api/products", json=body)


def test_health_is_healthy_on_a_consistent_ledger(client, db_session):
    resp = client.get("/health")

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "healthy"
    assert data["checks"]["ledger"]["status"] == "healthy"


def test_create_product_and_duplicate_sku(client, db_session):
    resp = _create_product(client)
    assert resp.status_code == 201
    assert resp.get_json()["stock"] == 5

    assert _create_product(client).status_code == 409
    assert client.post("/api/products", json={"sku": "NO-NAME"}).status_code == 400


def test_unknown_rows_are_404(client, db_session):
    assert client.get("/api/products/999999").status_code == 404
    assert client.get("/api/carts/999999").status_code == 404
    assert client.get("/api/transactions/999999").status_code == 404
    assert client.get("/api/purchase-orders/999999").status_code == 404


def test_register_flow_through_checkout(client, db_session):
    product_id = _create_product(client).get_json()["id"]

    cart = client.post("/api/carts", json={"cashier": "alex"}).get_json()
    resp = client.post(f"/api/carts/{cart['id']}/lines", json={"product_id": product_id, "quantity": 2})
    assert resp.status_code == 200
    assert resp.get_json()["totals"]["total_cents"] == 2160

    resp = client.post(f"/api/carts/{cart['id']}/lines", json={"product_id": product_id, "quantity": 4})
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "insufficient_stock"

    resp = client.post(
        f"/api/carts/{cart['id']}/checkout",
        json={"payments": [{"tender_type": "cash", "amount_cents": 2500}]},
    )
    assert resp.status_code == 201
    txn = resp.get_json()
    assert txn["change_due_cents"] == 340
    assert [line["quantity"] for line in txn["lines"]] == [2]

    assert client.get(f"/api/transactions/{txn['id']}").status_code == 200
    assert client.get(f"/api/products/{product_id}").get_json()["stock"] == 3
    assert client.get("/api/inventory/verify").get_json() == {"ok": True, "mismatches": []}

    again = client.post(
        f"/api/carts/{cart['id']}/checkout",
        json={"payments": [{"tender_type": "cash", "amount_cents": 2500}]},
    )
    assert again.status_code == 400


def test_checkout_requires_payments(client, db_session):
    cart = client.post("/api/carts", json={}).get_json()
    resp = client.post(f"/api/carts/{cart['id']}/checkout", json={})
    assert resp.status_code == 400


def test_discount_codes_over_http(client, db_session):
    now = utcnow()
    body = {
        "code": "spring",
        "discount_type": "percentage",
        "discount_value": 2000,
        "max_discount_cents": 300,
        "start_date": (now - timedelta(days=1)).isoformat() + "Z",
        "end_date": (now + timedelta(days=1)).isoformat() + "Z",
    }
    resp = client.post("/api/discounts", json=body)
    assert resp.status_code == 201
    assert resp.get_json()["code"] == "SPRING"
    assert client.post("/api/discounts", json=body).status_code == 409

    check = client.post("/api/discounts/validate", json={"code": "Spring", "subtotal_cents": 5000}).get_json()
    assert check["ok"] is True
    assert check["discount_cents"] == 300

    missing = client.post("/api/discounts/validate", json={"code": "NOPE", "subtotal_cents": 5000}).get_json()
    assert missing["ok"] is False
    assert missing["code"] == "not_found"


def test_rejected_discount_code_on_cart_is_400(client, db_session):
    cart = client.post("/api/carts", json={}).get_json()
    resp = client.post(f"/api/carts/{cart['id']}/discount", json={"code": "NOPE"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "not_found"


def test_purchase_order_partial_receipt_over_http(client, db_session):
    supplier = client.post("/api/suppliers", json={"name": "Acme Wholesale"}).get_json()
    product_id = _create_product(client, opening_stock=0).get_json()["id"]

    resp = client.post("/api/purchase-orders", json={
        "supplier_id": supplier["id"],
        "items": [{"product_id": product_id, "quantity": 10, "unit_cost_cents": 300}],
    })
    assert resp.status_code == 201
    po = resp.get_json()
    assert po["status"] == "sent"

    resp = client.post(f"/api/purchase-orders/{po['id']}/receive-partial", json={
        "items": [{"product_id": product_id, "received_qty": 7, "damaged_qty": 3}],
    })
    assert resp.status_code == 200
    result = resp.get_json()
    assert result["purchase_order"]["status"] == "partial"
    assert result["replacement"]["kind"] == "replacement"
    assert result["replacement"]["items"][0]["quantity"] == 3

    over = client.post(f"/api/purchase-orders/{po['id']}/receive-partial", json={
        "items": [{"product_id": product_id, "received_qty": 1}],
    })
    assert over.status_code == 400
    assert client.get(f"/api/products/{product_id}").get_json()["stock"] == 7


def test_estimation_round_trip_over_http(client, db_session):
    product_id = _create_product(client).get_json()["id"]
    cart = client.post("/api/carts", json={}).get_json()
    client.post(f"/api/carts/{cart['id']}/lines", json={"product_id": product_id, "quantity": 1})

    resp = client.post("/api/estimations", json={"cart_id": cart["id"], "notes": "Quote"})
    assert resp.status_code == 201
    estimation = resp.get_json()
    assert estimation["document_number"].startswith("EST-")

    recalled = client.post(f"/api/estimations/{estimation['id']}/recall", json={})
    assert recalled.status_code == 201
    assert recalled.get_json()["recalled_estimation_id"] == estimation["id"]


def test_variant_stock_adjustment_over_http(client, variant_product, large_variant):
    resp = client.post("/api/inventory/adjustments", json={
        "product_id": variant_product.id,
        "variant_id": large_variant.id,
        "new_stock": 6,
        "actor": "stockroom",
    })

    assert resp.status_code == 201
    assert resp.get_json()["variant_id"] == large_variant.id
    assert client.get(f"/api/products/{variant_product.id}").get_json()["stock"] == 10
    assert client.get("/api/inventory/verify").get_json() == {"ok": True, "mismatches": []}

    bad = client.post("/api/inventory/adjustments", json={
        "product_id": variant_product.id, "variant_id": 999999, "new_stock": 1,
    })
    assert bad.status_code == 404
