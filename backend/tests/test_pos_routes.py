# Overview: Pytest coverage for the POS HTTP API.

"""
POS API Tests

Drives the blueprints through the Flask test client with the tenant headers
an upstream gateway would forward, and checks the JSON error contract:
{"error": <message key>, "kind": <ErrorKind>, "details": {...}}.
"""

import pytest


def headers(org, actor_id=1, key=None):
    result = {"X-Org-Id": str(org.id), "X-Actor-Id": str(actor_id)}
    if key:
        result["Idempotency-Key"] = key
    return result


class TestRequestContext:

    def test_missing_tenant_headers(self, client, db_session):
        resp = client.get("/api/pos/registers")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "tenantContextRequired"

    def test_non_numeric_org_header(self, client, db_session):
        resp = client.get("/api/pos/registers", headers={"X-Org-Id": "acme", "X-Actor-Id": "1"})
        assert resp.status_code == 400

    def test_money_route_requires_idempotency_key(self, client, org_a, register_a):
        resp = client.post(
            "/api/pos/shifts/open",
            json={"register_id": register_a.id, "opening_cash_cents": 0},
            headers=headers(org_a),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "idempotencyKeyRequired"

    def test_idempotency_key_from_body(self, client, org_a, register_a):
        resp = client.post(
            "/api/pos/shifts/open",
            json={"register_id": register_a.id, "opening_cash": "10.00", "idempotency_key": "body-key"},
            headers=headers(org_a),
        )
        assert resp.status_code == 201
        assert resp.get_json()["shift"]["opening_cash_cents"] == 1000

    def test_malformed_body(self, client, org_a, register_a):
        resp = client.post(
            "/api/pos/shifts/open",
            json={"register_id": "one", "opening_cash_cents": 0},
            headers=headers(org_a, key="k"),
        )
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "BAD_REQUEST"


class TestRegisters:

    def test_create_and_list(self, client, org_a, store_a):
        resp = client.post(
            "/api/pos/registers",
            json={"store_id": store_a.id, "code": "REG-09", "name": "Back Counter"},
            headers=headers(org_a),
        )
        assert resp.status_code == 201

        listed = client.get(f"/api/pos/registers?store_id={store_a.id}", headers=headers(org_a)).get_json()
        assert [r["code"] for r in listed["registers"]] == ["REG-09"]
        assert listed["registers"][0]["open_shift"] is None

    def test_duplicate_code_conflict(self, client, org_a, store_a, register_a):
        resp = client.post(
            "/api/pos/registers",
            json={"store_id": store_a.id, "code": register_a.code, "name": "Dup"},
            headers=headers(org_a),
        )
        assert resp.status_code == 409
        assert resp.get_json()["kind"] == "CONFLICT"

    def test_foreign_register_not_found(self, client, org_b, register_a):
        resp = client.get(f"/api/pos/registers/{register_a.id}", headers=headers(org_b))
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["error"] == "posRegisterNotFound"
        assert body["details"] == {"register_id": register_a.id}


class TestSaleFlow:

    def test_full_shift(self, client, org_a, register_a, product_a, product_b):
        """Open, sell, refund one item, report, close."""
        opened = client.post(
            "/api/pos/shifts/open",
            json={"register_id": register_a.id, "opening_cash": "500.00"},
            headers=headers(org_a, key="open-1"),
        )
        assert opened.status_code == 201
        shift_id = opened.get_json()["shift"]["id"]

        draft = client.post(
            "/api/pos/sales/drafts",
            json={"register_id": register_a.id, "lines": [{"product_id": product_a.id, "qty": 1}]},
            headers=headers(org_a),
        )
        assert draft.status_code == 201
        sale_id = draft.get_json()["sale"]["id"]

        line = client.post(
            f"/api/pos/sales/{sale_id}/lines",
            json={"product_id": product_b.id, "qty": 2},
            headers=headers(org_a),
        )
        assert line.status_code == 201

        payments = {"payments": [{"method": "CASH", "amount": "100.00"}, {"method": "CARD", "amount_cents": 9000}]}
        completed = client.post(
            f"/api/pos/sales/{sale_id}/complete", json=payments, headers=headers(org_a, key="sale-1")
        )
        assert completed.status_code == 200
        assert completed.get_json()["sale"]["status"] == "COMPLETED"
        assert completed.get_json()["sale"]["replayed"] is False

        replay = client.post(
            f"/api/pos/sales/{sale_id}/complete", json=payments, headers=headers(org_a, key="sale-1")
        )
        assert replay.status_code == 200
        assert replay.get_json()["sale"]["replayed"] is True

        detail = client.get(f"/api/pos/sales/{sale_id}", headers=headers(org_a)).get_json()["sale"]
        sale_line_b = next(l for l in detail["lines"] if l["product_id"] == product_b.id)

        sale_return = client.post(
            "/api/pos/returns/drafts",
            json={"shift_id": shift_id, "original_sale_id": sale_id},
            headers=headers(org_a),
        )
        assert sale_return.status_code == 201
        return_id = sale_return.get_json()["return"]["id"]

        added = client.post(
            f"/api/pos/returns/{return_id}/lines",
            json={"sale_line_id": sale_line_b["id"], "qty": 1},
            headers=headers(org_a),
        )
        assert added.status_code == 201

        refunded = client.post(
            f"/api/pos/returns/{return_id}/complete",
            json={"payments": [{"method": "CASH", "amount_cents": 2000}]},
            headers=headers(org_a, key="ret-1"),
        )
        assert refunded.status_code == 200
        assert refunded.get_json()["return"]["status"] == "COMPLETED"

        report = client.get(f"/api/pos/shifts/{shift_id}/report", headers=headers(org_a)).get_json()
        # 500.00 + 100.00 cash sale - 20.00 cash refund
        assert report["summary"]["expected_cash_cents"] == 58000
        assert report["payments_by_method"]["CARD"]["sales_cents"] == 9000

        closed = client.post(
            f"/api/pos/shifts/{shift_id}/close",
            json={"closing_cash_counted": "579.50"},
            headers=headers(org_a, key="close-1"),
        )
        assert closed.status_code == 200
        shift = closed.get_json()["shift"]
        assert shift["status"] == "CLOSED"
        assert shift["discrepancy_cents"] == -50

    def test_payment_mismatch_details(self, client, org_a, register_a, product_a, open_shift):
        draft = client.post(
            "/api/pos/sales/drafts",
            json={"register_id": register_a.id, "lines": [{"product_id": product_a.id, "qty": 1}]},
            headers=headers(org_a),
        ).get_json()["sale"]

        resp = client.post(
            f"/api/pos/sales/{draft['id']}/complete",
            json={"payments": [{"method": "CASH", "amount_cents": 14999}]},
            headers=headers(org_a, key="short"),
        )
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"] == "posPaymentTotalMismatch"
        assert body["details"] == {"expected_cents": 15000, "received_cents": 14999}

    def test_payments_must_be_list(self, client, org_a, register_a, open_shift):
        draft = client.post(
            "/api/pos/sales/drafts", json={"register_id": register_a.id}, headers=headers(org_a)
        ).get_json()["sale"]

        resp = client.post(
            f"/api/pos/sales/{draft['id']}/complete",
            json={"payments": {"method": "CASH"}},
            headers=headers(org_a, key="k"),
        )
        assert resp.status_code == 400

    def test_draft_without_shift_conflicts(self, client, org_a, register_a):
        resp = client.post("/api/pos/sales/drafts", json={"register_id": register_a.id}, headers=headers(org_a))
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "posShiftNotOpen"

    def test_cash_movement_and_list_sales(self, client, org_a, register_a, open_shift):
        resp = client.post(
            f"/api/pos/shifts/{open_shift['id']}/cash-movements",
            json={"type": "PAY_IN", "amount": "25.00", "reason": "Float top-up"},
            headers=headers(org_a, key="cm-1"),
        )
        assert resp.status_code == 201
        assert resp.get_json()["movement"]["amount_cents"] == 2500

        listed = client.get("/api/pos/sales?status=COMPLETED", headers=headers(org_a))
        assert listed.status_code == 200
        assert listed.get_json()["total"] == 0

        invalid = client.get("/api/pos/sales?status=SHIPPED", headers=headers(org_a))
        assert invalid.status_code == 400


class TestCompliance:

    def test_put_then_get(self, client, org_a, store_a):
        assert client.get(
            f"/api/pos/stores/{store_a.id}/compliance", headers=headers(org_a)
        ).get_json() == {"profile": None}

        resp = client.put(
            f"/api/pos/stores/{store_a.id}/compliance",
            json={"enable_kkm": True, "kkm_mode": "ADAPTER", "kkm_provider_key": "fake"},
            headers=headers(org_a),
        )
        assert resp.status_code == 200

        profile = client.get(f"/api/pos/stores/{store_a.id}/compliance", headers=headers(org_a)).get_json()["profile"]
        assert profile["kkm_mode"] == "ADAPTER"
        assert profile["kkm_provider_key"] == "fake"

    def test_invalid_mode(self, client, org_a, store_a):
        resp = client.put(
            f"/api/pos/stores/{store_a.id}/compliance",
            json={"enable_kkm": True, "kkm_mode": "PRINTER"},
            headers=headers(org_a),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "invalidKkmMode"

    def test_foreign_store(self, client, org_b, store_a):
        resp = client.put(
            f"/api/pos/stores/{store_a.id}/compliance",
            json={"enable_kkm": False},
            headers=headers(org_b),
        )
        assert resp.status_code == 404


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["fiscal"]["provider"] == "stub"
