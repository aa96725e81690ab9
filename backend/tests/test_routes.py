"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Sellers are denied privileged operations (403)
- Domain errors map to their status codes with a machine-readable kind
"""

import pytest

from bodega.time_utils import utcnow


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:

    def test_login_and_me(self, client, seller_user):
        resp = client.post("/api/auth/login", json={"username": "seller", "password": "Password123!"})
        assert resp.status_code == 200
        token = resp.json["token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json["user"]["role"] == "seller"

    def test_login_wrong_password(self, client, seller_user):
        resp = client.post("/api/auth/login", json={"username": "seller", "password": "Wrong123!"})
        assert resp.status_code == 401

    def test_login_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "seller"})
        assert resp.status_code == 400

    def test_login_non_object_body(self, client, db_session):
        resp = client.post("/api/auth/login", json=["seller", "Password123!"])
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, seller_headers):
        assert client.post("/api/auth/logout", headers=seller_headers).status_code == 200
        assert client.get("/api/auth/me", headers=seller_headers).status_code == 401


class TestUnauthenticatedAccess:
    """Protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/sales/cash"),
            ("POST", "/api/sales/credit"),
            ("POST", "/api/sales/1/void"),
            ("GET", "/api/sales"),
            ("GET", "/api/sales/summary"),
            ("GET", "/api/credits"),
            ("POST", "/api/credits/1/payments"),
            ("POST", "/api/credits/mark-overdue"),
            ("GET", "/api/credits/due-soon"),
            ("GET", "/api/credits/overdue-report"),
            ("GET", "/api/clients/1/credit"),
            ("GET", "/api/clients/1/sales"),
            ("POST", "/api/inventory/products/1/in"),
            ("GET", "/api/inventory/products/1/kardex"),
            ("GET", "/api/inventory/movements/report"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"


class TestSellerDeniedPrivileged:

    def test_cannot_void_sale(self, client, seller_headers):
        resp = client.post("/api/sales/1/void", headers=seller_headers, json={})
        assert resp.status_code == 403
        assert resp.json["required_roles"] == ["admin", "manager"]

    def test_cannot_move_stock(self, client, seller_headers, product):
        resp = client.post(
            f"/api/inventory/products/{product.id}/in",
            headers=seller_headers,
            json={"quantity": 1, "reason": "Purchase"},
        )
        assert resp.status_code == 403

    def test_cannot_run_overdue_sweep(self, client, seller_headers):
        assert client.post("/api/credits/mark-overdue", headers=seller_headers).status_code == 403


# =============================================================================
# SALES
# =============================================================================


class TestSalesApi:

    def test_cash_sale(self, client, seller_headers, cash_client, product):
        resp = client.post(
            "/api/sales/cash",
            headers=seller_headers,
            json={
                "client_id": cash_client.id,
                "lines": [{"product_id": product.id, "quantity": 3}],
                "discount": {"type": "PERCENT", "value": 10},
            },
        )
        assert resp.status_code == 201
        assert resp.json["sale"]["total"] == "270.00"
        assert resp.json["discount"]["discount_amount"] == "30.00"
        assert resp.json["movements_generated"] == 1

    def test_credit_sale_for_cash_client_is_409(self, client, seller_headers, cash_client, product):
        resp = client.post(
            "/api/sales/credit",
            headers=seller_headers,
            json={"client_id": cash_client.id, "lines": [{"product_id": product.id, "quantity": 1}]},
        )
        assert resp.status_code == 409
        assert resp.json["kind"] == "CLIENT_TYPE_MISMATCH"

    def test_insufficient_stock_is_409(self, client, seller_headers, cash_client, product):
        resp = client.post(
            "/api/sales/cash",
            headers=seller_headers,
            json={"client_id": cash_client.id, "lines": [{"product_id": product.id, "quantity": 500}]},
        )
        assert resp.status_code == 409
        assert resp.json["kind"] == "INSUFFICIENT_STOCK"
        assert resp.json["details"][0]["available"] == 50

    def test_missing_client_id_is_400(self, client, seller_headers):
        resp = client.post("/api/sales/cash", headers=seller_headers, json={"lines": []})
        assert resp.status_code == 400
        assert resp.json["kind"] == "VALIDATION_ERROR"

    def test_unknown_sale_is_404(self, client, seller_headers):
        assert client.get("/api/sales/999999", headers=seller_headers).status_code == 404

    def test_manager_voids_sale(self, client, seller_headers, manager_headers, cash_client, product):
        created = client.post(
            "/api/sales/cash",
            headers=seller_headers,
            json={"client_id": cash_client.id, "lines": [{"product_id": product.id, "quantity": 2}]},
        )
        sale_id = created.json["sale"]["id"]

        resp = client.post(f"/api/sales/{sale_id}/void", headers=manager_headers, json={"reason": "Wrong client"})
        assert resp.status_code == 200
        assert resp.json["sale"]["status"] == "VOID"

        again = client.post(f"/api/sales/{sale_id}/void", headers=manager_headers, json={})
        assert again.status_code == 409
        assert again.json["kind"] == "ALREADY_VOID"

    def test_void_with_non_object_body_is_400(self, client, seller_headers, manager_headers, cash_client, product):
        created = client.post(
            "/api/sales/cash",
            headers=seller_headers,
            json={"client_id": cash_client.id, "lines": [{"product_id": product.id, "quantity": 2}]},
        )
        sale_id = created.json["sale"]["id"]

        resp = client.post(f"/api/sales/{sale_id}/void", headers=manager_headers, json=["Wrong client"])
        assert resp.status_code == 400
        assert resp.json["kind"] == "VALIDATION_ERROR"

        detail = client.get(f"/api/sales/{sale_id}", headers=seller_headers)
        assert detail.json["sale"]["status"] == "ACTIVE"

    def test_client_sales(self, client, seller_headers, cash_client, product):
        client.post(
            "/api/sales/cash",
            headers=seller_headers,
            json={"client_id": cash_client.id, "lines": [{"product_id": product.id, "quantity": 3}]},
        )

        resp = client.get(f"/api/clients/{cash_client.id}/sales", headers=seller_headers)
        assert resp.status_code == 200
        assert len(resp.json["sales"]) == 1
        assert resp.json["totals"]["total_amount"] == "300.00"

        assert client.get("/api/clients/999999/sales", headers=seller_headers).status_code == 404

    def test_list_and_summary(self, client, seller_headers, cash_client, product):
        client.post(
            "/api/sales/cash",
            headers=seller_headers,
            json={"client_id": cash_client.id, "lines": [{"product_id": product.id, "quantity": 1}]},
        )

        listed = client.get("/api/sales?sale_type=CASH", headers=seller_headers)
        assert listed.status_code == 200
        assert len(listed.json["sales"]) == 1

        summary = client.get("/api/sales/summary", headers=seller_headers)
        assert summary.json["cash_total"] == "100.00"

    def test_bad_limit_is_400(self, client, seller_headers):
        assert client.get("/api/sales?limit=0", headers=seller_headers).status_code == 400


# =============================================================================
# CREDITS
# =============================================================================


class TestCreditsApi:

    def _credit_sale(self, client, headers, client_id, product_id, quantity):
        resp = client.post(
            "/api/sales/credit",
            headers=headers,
            json={"client_id": client_id, "lines": [{"product_id": product_id, "quantity": quantity}]},
        )
        assert resp.status_code == 201
        return resp.json["credit"]

    def test_payment_flow(self, client, seller_headers, credit_client, product):
        credit = self._credit_sale(client, seller_headers, credit_client.id, product.id, 5)

        paid = client.post(
            f"/api/credits/{credit['id']}/payments",
            headers=seller_headers,
            json={"amount": "200.00", "method": "card"},
        )
        assert paid.status_code == 201
        assert paid.json["new_balance"] == "300.00"
        assert paid.json["payment"]["method"] == "CARD"

        excess = client.post(
            f"/api/credits/{credit['id']}/payments",
            headers=seller_headers,
            json={"amount": "300.01"},
        )
        assert excess.status_code == 409
        assert excess.json["kind"] == "EXCESS_PAYMENT"

        settled = client.post(
            f"/api/credits/{credit['id']}/payments",
            headers=seller_headers,
            json={"amount": 300},
        )
        assert settled.json["settled"] is True
        assert settled.json["credit"]["status"] == "PAID"

        detail = client.get(f"/api/credits/{credit['id']}", headers=seller_headers)
        assert detail.json["payment_count"] == 2

    def test_payment_rejects_unknown_fields(self, client, seller_headers, credit_client, product):
        credit = self._credit_sale(client, seller_headers, credit_client.id, product.id, 1)
        resp = client.post(
            f"/api/credits/{credit['id']}/payments",
            headers=seller_headers,
            json={"amount": "10.00", "resulting_balance": "0"},
        )
        assert resp.status_code == 400
        assert "Field not allowed: resulting_balance" in resp.json["details"]

    def test_mark_overdue_and_client_report(self, client, seller_headers, admin_headers, credit_client, product):
        credit = self._credit_sale(client, seller_headers, credit_client.id, product.id, 2)

        resp = client.post("/api/credits/mark-overdue", headers=admin_headers, json={"today": "2999-01-01"})
        assert resp.status_code == 200
        assert resp.json["marked"] == 1
        assert resp.json["credits"][0]["id"] == credit["id"]

        report = client.get(f"/api/clients/{credit_client.id}/credit", headers=seller_headers)
        assert report.status_code == 200
        assert report.json["availability"]["status"] == "IN_ARREARS"

        listed = client.get("/api/credits?status=OVERDUE", headers=seller_headers)
        assert [c["id"] for c in listed.json["credits"]] == [credit["id"]]

    def test_collections_summary(self, client, seller_headers, credit_client, product):
        self._credit_sale(client, seller_headers, credit_client.id, product.id, 2)
        resp = client.get("/api/credits/summary", headers=seller_headers)
        assert resp.status_code == 200
        assert resp.json["active_balance"] == "200.00"

    def test_due_soon(self, client, seller_headers, credit_client, product):
        credit = self._credit_sale(client, seller_headers, credit_client.id, product.id, 1)

        resp = client.get("/api/credits/due-soon?days=30", headers=seller_headers)
        assert resp.status_code == 200
        assert [c["id"] for c in resp.json["credits"]] == [credit["id"]]

        assert client.get("/api/credits/due-soon", headers=seller_headers).json["total"] == 0
        assert client.get("/api/credits/due-soon?days=0", headers=seller_headers).status_code == 400

    def test_overdue_report(self, client, seller_headers, admin_headers, credit_client, product):
        self._credit_sale(client, seller_headers, credit_client.id, product.id, 1)

        assert client.get("/api/credits/overdue-report", headers=seller_headers).status_code == 403

        resp = client.get("/api/credits/overdue-report", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["credit_count"] == 0
        assert resp.json["total_overdue"] == "0.00"


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventoryApi:

    def test_record_and_adjust(self, client, manager_headers, product):
        resp = client.post(
            f"/api/inventory/products/{product.id}/in",
            headers=manager_headers,
            json={"quantity": 5, "reason": "Purchase", "reference": "PO-1"},
        )
        assert resp.status_code == 201
        assert resp.json["stock_after"] == 55

        resp = client.post(
            f"/api/inventory/products/{product.id}/adjust",
            headers=manager_headers,
            json={"target_quantity": 52},
        )
        assert resp.status_code == 201
        assert resp.json["movement"]["direction"] == "OUT"

        stats = client.get(f"/api/inventory/products/{product.id}/stats", headers=manager_headers)
        assert stats.json["current_stock"] == 52

    def test_out_beyond_stock_is_409(self, client, manager_headers, product):
        resp = client.post(
            f"/api/inventory/products/{product.id}/out",
            headers=manager_headers,
            json={"quantity": 51, "reason": "Breakage"},
        )
        assert resp.status_code == 409

    def test_float_quantity_is_400(self, client, manager_headers, product):
        resp = client.post(
            f"/api/inventory/products/{product.id}/in",
            headers=manager_headers,
            json={"quantity": 1.5, "reason": "Purchase"},
        )
        assert resp.status_code == 400

    def test_kardex(self, client, manager_headers, product):
        resp = client.get(f"/api/inventory/products/{product.id}/kardex", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["closing_stock"] == 50
        assert len(resp.json["entries"]) == 1

    def test_movement_report(self, client, manager_headers, product):
        today = utcnow().date().isoformat()
        resp = client.get(
            f"/api/inventory/movements/report?date_from={today}&date_to={today}",
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.json["summary"]["quantity_in"] == 50
        assert resp.json["movements"][0]["product_name"] == "Cement bag"

        missing = client.get(f"/api/inventory/movements/report?date_from={today}", headers=manager_headers)
        assert missing.status_code == 400


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"
