"""
API tests.

Verifies:
- Unauthenticated requests return 401 and write nothing
- Checkout -> receipt -> edit -> void through the HTTP surface
- Error mapping (400/404) for domain errors
- Catalog and inventory endpoints
"""

import pytest

from retailpos.models import Product, Sale, StockMovement


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("PATCH", "/api/products/1/price"),
            ("GET", "/api/inventory/1"),
            ("GET", "/api/inventory/low-stock"),
            ("POST", "/api/inventory/batches"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales/checkout"),
            ("POST", "/api/sales/abc/void"),
            ("POST", "/api/sales/abc/edit"),
            ("GET", "/api/sales/abc/receipt"),
            ("POST", "/api/auth/logout"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = client.open(path, method=method)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_checkout_without_token_writes_nothing(self, client, db_session, widget):
        resp = client.post("/api/sales/checkout", json={"items": [{"product_id": widget.id, "quantity": 1}]})
        assert resp.status_code == 401
        assert db_session.query(Sale).count() == 0

    def test_bad_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


class TestAuth:

    def test_wrong_password(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "Wrong123!"})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, auth_headers):
        assert client.post("/api/auth/logout", headers=auth_headers).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers).status_code == 401


# =============================================================================
# SALE LIFECYCLE
# =============================================================================


class TestSaleLifecycle:

    def checkout(self, client, auth_headers, items, **extra):
        return client.post("/api/sales/checkout", headers=auth_headers, json={"items": items, **extra})

    def test_checkout_receipt_void(self, client, db_session, auth_headers, widget):
        resp = self.checkout(client, auth_headers, [{"product_id": widget.id, "quantity": 3}],
                             payment_method="cash", received_cents=5000)
        assert resp.status_code == 201
        body = resp.get_json()
        sale_id = body["sale"]["id"]
        assert body["sale"]["total_cents"] == 3000
        assert body["sale"]["change_cents"] == 2000
        assert body["skipped_writes"] == []

        receipt = client.get(f"/api/sales/{sale_id}/receipt", headers=auth_headers).get_json()["receipt"]
        assert receipt["reference"].startswith("SALE-")
        assert receipt["lines"][0]["quantity"] == 3

        resp = client.post(f"/api/sales/{sale_id}/void", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["status"] == "cancelled"
        assert [m["reference"][:5] for m in resp.get_json()["movements"]] == ["VOID-"]

        resp = client.post(f"/api/sales/{sale_id}/void", headers=auth_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Sale already cancelled"

        db_session.expire_all()
        assert db_session.get(Product, widget.id).stock_quantity == 20

    def test_edit_through_api(self, client, db_session, auth_headers, widget, gadget):
        resp = self.checkout(client, auth_headers, [
            {"product_id": widget.id, "quantity": 5},
            {"product_id": gadget.id, "quantity": 3},
        ])
        sale = resp.get_json()["sale"]
        items = {item["product_id"]: item["id"] for item in resp.get_json()["sale_items"]}

        resp = client.post(f"/api/sales/{sale['id']}/edit", headers=auth_headers,
                           json={"items": [{"item_id": items[widget.id], "quantity": 2}]})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["sale"]["subtotal_cents"] == 2750
        assert body["changes"]["adjustments"] == [{"product_id": widget.id, "type": "in", "quantity": 3}]

        movements = client.get(f"/api/sales/{sale['id']}/movements", headers=auth_headers).get_json()["movements"]
        assert sorted(m["reference"][:4] for m in movements) == ["EDIT", "SALE", "SALE"]

    def test_removing_last_item_rejected(self, client, db_session, auth_headers, widget):
        sale = self.checkout(client, auth_headers, [{"product_id": widget.id, "quantity": 2}]).get_json()
        item_id = sale["sale_items"][0]["id"]
        resp = client.post(f"/api/sales/{sale['sale']['id']}/edit", headers=auth_headers,
                           json={"items": [{"item_id": item_id, "quantity": 0}]})
        assert resp.status_code == 400
        assert "Void the sale instead" in resp.get_json()["error"]

    def test_idempotency_header_replays(self, client, db_session, auth_headers, widget):
        headers = {**auth_headers, "Idempotency-Key": "till-1-0001"}
        items = [{"product_id": widget.id, "quantity": 1}]
        first = client.post("/api/sales/checkout", headers=headers, json={"items": items})
        second = client.post("/api/sales/checkout", headers=headers, json={"items": items})
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert db_session.query(Sale).count() == 1

    def test_price_override_written_to_catalog(self, client, db_session, auth_headers, widget):
        resp = self.checkout(client, auth_headers, [{"product_id": widget.id, "quantity": 1, "price_cents": 1500}])
        assert resp.status_code == 201
        assert resp.get_json()["sale_items"][0]["unit_price_cents"] == 1500
        product = client.get(f"/api/products/{widget.id}", headers=auth_headers).get_json()["product"]
        assert product["price_cents"] == 1500

    @pytest.mark.parametrize("extra,status", [
        ({"payment_method": "bitcoin"}, 400),
        ({"customer_id": 999}, 404),
    ])
    def test_rejected_checkout_keeps_catalog_price(self, client, db_session, auth_headers, widget, extra, status):
        payload = {"items": [{"product_id": widget.id, "quantity": 1, "price_cents": 1}], **extra}
        resp = client.post("/api/sales/checkout", headers=auth_headers, json=payload)
        assert resp.status_code == status

        db_session.expire_all()
        assert db_session.get(Product, widget.id).price_cents == 1000
        assert db_session.query(Sale).count() == 0

    @pytest.mark.parametrize("payload,status", [
        ({}, 400),
        ({"items": [{"product_id": 1, "quantity": 1.5}]}, 400),
        ({"items": [{"product_id": 1, "quantity": 1, "price_cents": -100}]}, 400),
        ({"items": [{"product_id": 999, "quantity": 1}]}, 404),
    ])
    def test_checkout_errors(self, client, db_session, auth_headers, payload, status):
        resp = client.post("/api/sales/checkout", headers=auth_headers, json=payload)
        assert resp.status_code == status
        assert db_session.query(Sale).count() == 0

    def test_unknown_customer(self, client, db_session, auth_headers, widget):
        resp = self.checkout(client, auth_headers, [{"product_id": widget.id, "quantity": 1}], customer_id=77)
        assert resp.status_code == 404

    def test_list_and_get_sales(self, client, db_session, auth_headers, widget):
        sale_id = self.checkout(client, auth_headers, [{"product_id": widget.id, "quantity": 1}]).get_json()["sale"]["id"]

        listed = client.get("/api/sales?status=completed", headers=auth_headers).get_json()["sales"]
        assert [s["id"] for s in listed] == [sale_id]
        assert client.get("/api/sales?status=cancelled", headers=auth_headers).get_json()["sales"] == []
        bad = client.get("/api/sales?since=yesterday", headers=auth_headers)
        assert bad.status_code == 400
        assert bad.get_json()["error"] == "since must be an ISO-8601 datetime"

        detail = client.get(f"/api/sales/{sale_id}", headers=auth_headers).get_json()["sale"]
        assert detail["items"][0]["product_sku"] == "WID-1"
        assert client.get("/api/sales/missing", headers=auth_headers).status_code == 404


# =============================================================================
# CATALOG / INVENTORY
# =============================================================================


class TestCatalogRoutes:

    def test_create_product_with_opening_stock(self, client, db_session, auth_headers):
        resp = client.post("/api/products", headers=auth_headers, json={
            "sku": "CAB-1", "name": "Cable", "price_cents": 499, "opening_stock": 12,
        })
        assert resp.status_code == 201
        product_id = resp.get_json()["product"]["id"]

        level = client.get(f"/api/inventory/{product_id}", headers=auth_headers).get_json()
        assert level["stock_quantity"] == 12
        assert level["drift"] == 0

    def test_duplicate_sku(self, client, db_session, auth_headers, widget):
        resp = client.post("/api/products", headers=auth_headers, json={
            "sku": "WID-1", "name": "Other", "price_cents": 1,
        })
        assert resp.status_code == 400

    def test_search_and_barcode_lookup(self, client, db_session, auth_headers, widget, gadget):
        found = client.get("/api/products?q=wid", headers=auth_headers).get_json()["products"]
        assert [p["sku"] for p in found] == ["WID-1"]
        resp = client.get("/api/products/barcode/1111111111111", headers=auth_headers)
        assert resp.get_json()["product"]["id"] == widget.id

    def test_negative_price_rejected(self, client, db_session, auth_headers, widget):
        resp = client.patch(f"/api/products/{widget.id}/price", headers=auth_headers, json={"price_cents": -1})
        assert resp.status_code == 400

    def test_receive_batch(self, client, db_session, auth_headers, widget):
        resp = client.post("/api/inventory/batches", headers=auth_headers, json={
            "supplier": "Acme",
            "lines": [{"product_id": widget.id, "quantity": 6, "unit_cost_cents": 400}],
        })
        assert resp.status_code == 201
        batch = resp.get_json()["batch"]
        assert batch["reference"].startswith("BATCH-")

        movements = client.get(f"/api/inventory/batches/{batch['id']}/movements", headers=auth_headers)
        assert [m["quantity"] for m in movements.get_json()["movements"]] == [6]
        assert db_session.query(StockMovement).filter_by(batch_id=batch["id"]).count() == 1

        listed = client.get("/api/inventory/batches", headers=auth_headers).get_json()["batches"]
        assert [b["id"] for b in listed] == [batch["id"]]

    def test_product_movements_and_low_stock(self, client, db_session, auth_headers, widget, gadget):
        movements = client.get(f"/api/inventory/{widget.id}/movements", headers=auth_headers).get_json()["movements"]
        assert [m["reference"] for m in movements] == ["OPENING"]
        low = client.get("/api/inventory/low-stock", headers=auth_headers).get_json()["products"]
        assert low == []


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"
