# Overview: Pytest coverage for the HTTP surface: auth, envelopes, status codes and CSV responses.

"""
API Tests

SECURITY TESTS: requests without a known user are 401, admin-only
endpoints are 403 for customers, and foreign documents are 403/404.

Every JSON response uses the envelope
{"success": bool, "data"|"error": ..., "pagination"?, "message"?}.
"""

import io

from tubex.models import Order

from conftest import auth_headers


def _quote_payload(products):
    return {"items": [{"product_id": products[0].id, "quantity": 2, "unit_price_cents": 1000}]}


def _create_order(client, user, products, qty=1):
    resp = client.post(
        "/api/orders",
        json={"items": [{"product_id": products[0].id, "quantity": qty}]},
        headers=auth_headers(user),
    )
    assert resp.status_code == 201
    return resp.get_json()["data"]


class TestHealth:
    """Health endpoint."""

    def test_health_reports_database(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["database"]["details"]["orders"] == 0
        assert body["timestamp"].endswith("Z")


class TestAuthentication:
    """X-User-Id resolution."""

    def test_missing_header_is_401(self, client, db_session):
        resp = client.get("/api/quotes")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "error": "Authentication required"}

    def test_unknown_user_is_401(self, client, db_session):
        resp = client.get("/api/quotes", headers={"X-User-Id": "777777"})
        assert resp.status_code == 401

    def test_malformed_header_is_401(self, client, db_session):
        resp = client.get("/api/quotes", headers={"X-User-Id": "admin"})
        assert resp.status_code == 401

    def test_inactive_user_is_401(self, client, db_session, customer):
        customer.is_active = False
        db_session.commit()
        resp = client.get("/api/quotes", headers=auth_headers(customer))
        assert resp.status_code == 401

    def test_admin_only_endpoint_is_403_for_customer(self, client, db_session, customer):
        resp = client.post("/api/pricing/migration", headers=auth_headers(customer))
        assert resp.status_code == 403
        assert resp.get_json()["success"] is False


class TestEnvelope:
    """Response shapes."""

    def test_create_and_list_quotes(self, client, db_session, customer, products):
        headers = auth_headers(customer)
        created = client.post("/api/quotes", json=_quote_payload(products), headers=headers)
        assert created.status_code == 201
        body = created.get_json()
        assert body["success"] is True
        assert body["data"]["status"] == "draft"
        assert body["data"]["total_amount_cents"] == 2000

        client.post("/api/quotes", json=_quote_payload(products), headers=headers)
        listed = client.get("/api/quotes?page=1&limit=1", headers=headers)
        assert listed.status_code == 200
        body = listed.get_json()
        assert len(body["data"]) == 1
        assert body["pagination"] == {"total": 2, "page": 1, "limit": 1, "pages": 2}

    def test_validation_error_is_400(self, client, db_session, customer):
        resp = client.post("/api/quotes", json={"items": []}, headers=auth_headers(customer))
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"] == "items must be a non-empty list"

    def test_non_object_body_is_400(self, client, db_session, customer):
        resp = client.post("/api/quotes", json=[1, 2], headers=auth_headers(customer))
        assert resp.status_code == 400

    def test_missing_product_lists_details(self, client, db_session, customer, products):
        payload = {"items": [{"product_id": 888888, "quantity": 1, "unit_price_cents": 1}]}
        resp = client.post("/api/quotes", json=payload, headers=auth_headers(customer))
        assert resp.status_code == 400
        assert resp.get_json()["details"] == {"missing_product_ids": [888888]}

    def test_not_found_is_404(self, client, db_session, customer):
        resp = client.get("/api/orders/888888", headers=auth_headers(customer))
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Order not found"

    def test_foreign_order_is_403(self, client, db_session, customer, other_customer, products):
        order = _create_order(client, customer, products)
        resp = client.get(f"/api/orders/{order['id']}", headers=auth_headers(other_customer))
        assert resp.status_code == 403

    def test_delete_quote_message(self, client, db_session, customer, products):
        headers = auth_headers(customer)
        quote = client.post("/api/quotes", json=_quote_payload(products), headers=headers).get_json()["data"]
        resp = client.delete(f"/api/quotes/{quote['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Quote deleted"


class TestOrderEndpoints:
    """Order lifecycle over HTTP."""

    def test_status_and_history(self, client, db_session, admin, customer, products):
        order = _create_order(client, customer, products, qty=4)
        assert order["total_amount_cents"] == 4000

        resp = client.post(
            f"/api/orders/{order['id']}/status",
            json={"action": "confirm", "notes": "Stock checked"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "confirmed"

        history = client.get(f"/api/orders/{order['id']}/history", headers=auth_headers(customer)).get_json()["data"]
        assert [h["new_status"] for h in history] == ["confirmed", "pending"]
        assert history[0]["user"]["id"] == admin.id

    def test_cancel_requires_reason(self, client, db_session, customer, products):
        order = _create_order(client, customer, products)
        resp = client.post(f"/api/orders/{order['id']}/cancel", json={}, headers=auth_headers(customer))
        assert resp.status_code == 400
        resp = client.post(
            f"/api/orders/{order['id']}/cancel", json={"reason": "Wrong size"}, headers=auth_headers(customer),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["metadata"]["cancellation_reason"] == "Wrong size"

    def test_bulk_partial_failure_is_200(self, client, db_session, admin, customer, products):
        good = _create_order(client, customer, products)
        resp = client.post(
            "/api/orders/bulk",
            json={"order_ids": [good["id"], 888888], "action": "confirm"},
            headers=auth_headers(admin),
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["data"]["processed"] == [good["id"]]
        assert body["data"]["failed"] == [{"id": 888888, "reason": "Order not found"}]
        assert body["message"] == "Processed 1 orders"
        db_session.expire_all()
        assert db_session.get(Order, good["id"]).status == "confirmed"

    def test_bulk_malformed_id_is_reported(self, client, db_session, admin, customer, products):
        good = _create_order(client, customer, products)
        resp = client.post(
            "/api/orders/bulk",
            json={"order_ids": [good["id"], [1]], "action": "confirm"},
            headers=auth_headers(admin),
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["data"]["processed"] == [good["id"]]
        assert body["data"]["failed"] == [{"id": [1], "reason": "order id must be an integer"}]

    def test_patch_order_details(self, client, db_session, customer, other_customer, products):
        order = _create_order(client, customer, products)
        resp = client.patch(
            f"/api/orders/{order['id']}",
            json={"payment_method": "check", "delivery_address": {"city": "Springfield"}},
            headers=auth_headers(customer),
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["payment_method"] == "check"
        assert data["delivery_address"] == {"city": "Springfield"}

        resp = client.patch(
            f"/api/orders/{order['id']}", json={"payment_method": "cash"}, headers=auth_headers(other_customer),
        )
        assert resp.status_code == 403


class TestInvoiceEndpoints:
    """Invoice and payment flow over HTTP."""

    def test_invoice_pay_and_void(self, client, db_session, admin, customer, products):
        order = _create_order(client, customer, products, qty=10)

        created = client.post(f"/api/invoices/from-order/{order['id']}", json={}, headers=auth_headers(admin))
        assert created.status_code == 201
        invoice = created.get_json()["data"]
        assert invoice["total_amount_cents"] == 10000

        duplicate = client.post(f"/api/invoices/from-order/{order['id']}", json={}, headers=auth_headers(admin))
        assert duplicate.status_code == 400

        paid = client.post(
            f"/api/invoices/{invoice['id']}/payments",
            json={"amount_cents": 6000, "payment_method": "bank_transfer"},
            headers=auth_headers(customer),
        )
        assert paid.status_code == 200
        body = paid.get_json()
        assert body["message"] == "Payment recorded successfully"
        assert body["data"]["invoice"]["status"] == "partially_paid"
        assert body["data"]["summary"]["remaining_cents"] == 4000

        forbidden = client.delete(f"/api/invoices/{invoice['id']}", headers=auth_headers(customer))
        assert forbidden.status_code == 403

        voided = client.delete(
            f"/api/invoices/{invoice['id']}", json={"reason": "Reissue"}, headers=auth_headers(admin),
        )
        assert voided.status_code == 200
        assert voided.get_json()["data"]["status"] == "void"

    def test_list_rejects_bad_sort(self, client, db_session, admin):
        resp = client.get("/api/invoices?sort_by=secret", headers=auth_headers(admin))
        assert resp.status_code == 400

    def test_reconcile_is_admin_only(self, client, db_session, admin, customer, products):
        headers = auth_headers(customer)
        invoice = client.post(
            "/api/invoices",
            json={"items": [{"product_id": products[0].id, "quantity": 1, "unit_price_cents": 5000}]},
            headers=headers,
        ).get_json()["data"]
        payment = client.post(
            "/api/payments",
            json={"invoice_id": invoice["id"], "amount_cents": 5000, "payment_method": "cash"},
            headers=headers,
        )
        assert payment.status_code == 201
        payment_id = payment.get_json()["data"]["id"]

        resp = client.post(
            f"/api/payments/{payment_id}/reconcile",
            json={"reconciliation_status": "disputed"},
            headers=headers,
        )
        assert resp.status_code == 403
        resp = client.post(
            f"/api/payments/{payment_id}/reconcile",
            json={"reconciliation_status": "disputed"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["reconciliation_status"] == "disputed"


class TestPriceListEndpoints:
    """Price lists, CSV export and import."""

    def test_export_and_import_csv(self, client, db_session, customer, other_customer, products):
        headers = auth_headers(customer)
        price_list = client.post(
            "/api/price-lists", json={"name": "Contract", "status": "active"}, headers=headers,
        ).get_json()["data"]
        added = client.post(
            f"/api/price-lists/{price_list['id']}/items",
            json={"product_id": products[0].id, "price_cents": 1250},
            headers=headers,
        )
        assert added.status_code == 201
        conflict = client.post(
            f"/api/price-lists/{price_list['id']}/items",
            json={"product_id": products[0].id, "price_cents": 1200},
            headers=headers,
        )
        assert conflict.status_code == 409

        exported = client.get(f"/api/price-lists/{price_list['id']}/export", headers=headers)
        assert exported.status_code == 200
        assert exported.mimetype == "text/csv"
        assert exported.headers["Content-Disposition"] == f"attachment; filename=price-list-{price_list['id']}.csv"
        assert "12.50" in exported.get_data(as_text=True)

        upload = f"product_id,price\n{products[1].id},30.00\n".encode("utf-8")
        imported = client.post(
            f"/api/price-lists/{price_list['id']}/import",
            data={"file": (io.BytesIO(upload), "prices.csv")},
            content_type="multipart/form-data",
            headers=headers,
        )
        assert imported.status_code == 200
        assert imported.get_json()["data"] == {"created": 1, "updated": 0, "errors": []}

        detail = client.get(f"/api/price-lists/{price_list['id']}", headers=headers).get_json()["data"]
        assert len(detail["items"]) == 2

        hidden = client.get(f"/api/price-lists/{price_list['id']}", headers=auth_headers(other_customer))
        assert hidden.status_code == 404


class TestPricingEndpoints:
    """Unified pricing and migration."""

    def test_resolve_uses_buyer_company(self, client, db_session, customer, products):
        headers = auth_headers(customer)
        created = client.post(
            "/api/pricing",
            json={"product_id": products[0].id, "price_cents": 800, "pricing_type": "wholesale"},
            headers=headers,
        )
        assert created.status_code == 201

        resolved = client.get(f"/api/pricing/resolve?product_id={products[0].id}&quantity=3", headers=headers)
        assert resolved.status_code == 200
        data = resolved.get_json()["data"]
        assert data["unit_price_cents"] == 800
        assert data["base_price_cents"] == 1000
        assert data["quantity"] == 3

    def test_migration_run_verify_rollback(self, client, db_session, admin, customer, products):
        headers = auth_headers(customer)
        price_list = client.post(
            "/api/price-lists", json={"name": "Dealer list", "status": "active"}, headers=headers,
        ).get_json()["data"]
        client.post(
            f"/api/price-lists/{price_list['id']}/items",
            json={"product_id": products[0].id, "price_cents": 700},
            headers=headers,
        )

        admin_headers = auth_headers(admin)
        run = client.post("/api/pricing/migration", headers=admin_headers)
        assert run.status_code == 200
        assert run.get_json()["message"] == "Pricing migration completed"
        assert run.get_json()["data"]["migrated_pricing"] == 1

        again = client.post("/api/pricing/migration", headers=admin_headers)
        assert again.status_code == 400

        verified = client.get("/api/pricing/migration", headers=admin_headers).get_json()["data"]
        assert verified["ok"] is True

        pricing = client.get("/api/pricing", headers=headers).get_json()["data"]
        assert [(p["pricing_type"], p["price_cents"]) for p in pricing] == [("dealer", 700)]

        rolled_back = client.delete("/api/pricing/migration", headers=admin_headers)
        assert rolled_back.status_code == 200
        assert rolled_back.get_json()["data"]["deleted_pricing"] == 1


class TestCors:
    """Allowed origins get CORS headers."""

    def test_allowed_origin(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "X-User-Id" in resp.headers["Access-Control-Allow-Headers"]

    def test_unknown_origin(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
