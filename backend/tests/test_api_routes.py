# Overview: Pytest coverage for the HTTP surface and CLI commands.

"""
API Route Tests

Tests:
1. Identity: every endpoint requires a known, active X-User-Id (401)
2. Roles: drivers cannot call manager-only endpoints (403)
3. Error mapping: NotFound 404, Conflict 409, Capacity/Validation 400 with details
4. A full business day driven over HTTP
5. CLI: system init, ledger verify
"""

import pytest
from conftest import LOAD_DATE, day, receive, user_headers

from dairy_ledger.extensions import db
from dairy_ledger.models import Batch, Product, User


class TestIdentityRequired:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/batches"),
            ("POST", "/api/batches"),
            ("GET", "/api/stock-movements/daily"),
            ("POST", "/api/stock-movements/adjust"),
            ("GET", "/api/truck-loads"),
            ("POST", "/api/truck-loads"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("GET", "/api/allowances"),
            ("POST", "/api/allowances"),
            ("GET", "/api/reconciliations"),
            ("POST", "/api/reconciliations/start"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = client.open(path, method=method, json={})
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    @pytest.mark.parametrize("header", ["abc", "99999", "-1"])
    def test_bad_identity(self, client, db_session, header):
        resp = client.get("/api/truck-loads", headers={"X-User-Id": header})
        assert resp.status_code == 401

    def test_inactive_user(self, client, db_session, manager):
        manager.is_active = False
        db_session.commit()

        resp = client.get("/api/truck-loads", headers=user_headers(manager))
        assert resp.status_code == 401


class TestDriverRestrictions:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/batches"),
            ("POST", "/api/stock-movements/adjust"),
            ("POST", "/api/truck-loads"),
            ("PUT", "/api/truck-loads/1/reconcile"),
            ("DELETE", "/api/truck-loads/1"),
            ("POST", "/api/allowances"),
            ("POST", "/api/allowances/1/allocate"),
            ("POST", "/api/allowances/1/finalize"),
            ("POST", "/api/reconciliations/start"),
            ("POST", f"/api/reconciliations/{LOAD_DATE.isoformat()}/finalize"),
        ],
    )
    def test_manager_only(self, client, db_session, driver, method, path):
        resp = client.open(path, method=method, json={}, headers=user_headers(driver))
        assert resp.status_code == 403
        assert resp.get_json()["required_role"] == ["manager"]


class TestErrorMapping:

    def test_not_found(self, client, db_session, manager):
        resp = client.get("/api/truck-loads/99999", headers=user_headers(manager))
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Truck load not found"

    def test_validation_error(self, client, db_session, manager, truck):
        resp = client.post("/api/truck-loads", headers=user_headers(manager), json={
            "truck_id": truck.id,
            "load_date": LOAD_DATE.isoformat(),
            "items": [{"batch_id": 1, "product_id": 1, "quantity_loaded": 1}],
        })
        assert resp.status_code == 400
        assert "exactly one of batch_id or product_id" in resp.get_json()["error"]

    def test_bad_date(self, client, db_session, manager):
        resp = client.post("/api/allowances", headers=user_headers(manager), json={
            "allowance_date": "18/10/2026", "total_allowance": "100.00",
        })
        assert resp.status_code == 400

    def test_capacity_error_details(self, client, db_session, manager, milk, truck):
        receive(milk, "M-1", 5, day(3))

        resp = client.post("/api/truck-loads", headers=user_headers(manager), json={
            "truck_id": truck.id,
            "load_date": LOAD_DATE.isoformat(),
            "items": [{"product_id": milk.id, "quantity_loaded": 8}],
        })

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["details"]["needed"] == 8
        assert body["details"]["available"] == 5

    def test_conflict(self, client, db_session, manager, milk, truck):
        receive(milk, "M-1", 50, day(3))
        payload = {
            "truck_id": truck.id,
            "load_date": LOAD_DATE.isoformat(),
            "items": [{"product_id": milk.id, "quantity_loaded": 8}],
        }

        assert client.post("/api/truck-loads", headers=user_headers(manager), json=payload).status_code == 201
        resp = client.post("/api/truck-loads", headers=user_headers(manager), json=payload)
        assert resp.status_code == 409


class TestBusinessDay:

    def test_full_day_over_http(self, client, db_session, manager, driver, other_driver, milk, truck, shop):
        mgr = user_headers(manager)
        date_str = LOAD_DATE.isoformat()

        # Delivery
        resp = client.post("/api/batches", headers=mgr, json={
            "delivery_date": date_str,
            "delivery_note_number": "DN-500",
            "items": [
                {"product_id": milk.id, "batch_number": "M-A", "quantity": 100, "expiry_date": day(5).isoformat()},
                {"product_id": milk.id, "batch_number": "M-B", "quantity": 50, "expiry_date": day(3).isoformat()},
            ],
        })
        assert resp.status_code == 201
        batches = resp.get_json()["batches"]
        assert [b["remaining_quantity"] for b in batches] == [100, 50]

        # Load: FIFO takes all of M-B then 10 of M-A
        resp = client.post("/api/truck-loads", headers=mgr, json={
            "truck_id": truck.id,
            "load_date": date_str,
            "items": [{"product_id": milk.id, "quantity_loaded": 60}],
        })
        assert resp.status_code == 201
        load = resp.get_json()["truck_load"]
        assert load["summary"]["total_loaded"] == 60
        load_id = load["id"]

        # Sales
        resp = client.post("/api/sales", headers=user_headers(other_driver), json={
            "shop_id": shop.id, "truck_load_id": load_id, "items": [{"product_id": milk.id, "quantity": 1}],
        })
        assert resp.status_code == 403

        resp = client.post("/api/sales", headers=user_headers(driver), json={
            "shop_id": shop.id,
            "truck_load_id": load_id,
            "items": [{"product_id": milk.id, "quantity": 55}],
            "amount_paid": "10000.00",
        })
        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["total_amount"] == "12100.00"
        assert sale["summary"]["total_commission"] == "550.00"
        assert sale["payment_status"] == "pending"

        resp = client.patch(f"/api/sales/{sale['id']}/payment", headers=user_headers(driver),
                            json={"additional_payment": "2100.00"})
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["payment_status"] == "paid"

        # Allowance
        resp = client.post("/api/allowances", headers=mgr, json={
            "allowance_date": date_str, "total_allowance": "1000.00",
        })
        assert resp.status_code == 201
        pool_id = resp.get_json()["allowance"]["id"]

        resp = client.post(f"/api/allowances/{pool_id}/allocate", headers=mgr, json={
            "allocations": [{"truck_id": truck.id, "amount": "400.00", "distance_covered": 38}],
        })
        assert resp.status_code == 200
        assert resp.get_json()["allowance"]["status"] == "allocated"

        resp = client.post(f"/api/allowances/{pool_id}/finalize", headers=mgr)
        assert resp.status_code == 200

        # Reconciliation
        resp = client.post("/api/reconciliations/start", headers=mgr, json={"reconciliation_date": date_str})
        assert resp.status_code == 201
        assert resp.get_json()["reconciliation"]["trucks_out"] == 1

        resp = client.post(f"/api/reconciliations/{date_str}/trucks/{truck.id}/verify", headers=mgr, json={
            "items_returned": [{"product_id": milk.id, "quantity": 4}],
            "items_discarded": [{"product_id": milk.id, "quantity": 1, "reason": "expired"}],
        })
        assert resp.status_code == 200
        assert resp.get_json()["reconciliation"]["status"] == "completed"

        resp = client.post(f"/api/reconciliations/{date_str}/finalize", headers=mgr)
        assert resp.status_code == 200
        recon = resp.get_json()["reconciliation"]
        assert recon["total_commission_earned"] == "550.00"
        assert recon["total_allowance_allocated"] == "400.00"
        assert recon["net_profit"] == "150.00"
        assert recon["profit_status"] == "profit"
        assert recon["truck_items"][0]["has_discrepancy"] is False

        resp = client.get(f"/api/reconciliations/{date_str}", headers=user_headers(driver))
        assert resp.status_code == 200
        assert resp.get_json()["reconciliation"]["status"] == "finalized"

        # Ledger reads
        resp = client.get(f"/api/stock-movements/daily?date={date_str}", headers=mgr)
        assert resp.status_code == 200
        totals = {row["movement_type"]: row["total_quantity"] for row in resp.get_json()["summary"]}
        assert totals == {"delivery_in": 150, "truck_load_out": 60, "sale_out": 55, "truck_return_in": 4}

        batch_a = db_session.query(Batch).filter_by(batch_number="M-A").one()
        resp = client.get(f"/api/batches/{batch_a.id}/balance", headers=mgr)
        assert resp.get_json()["balance"]["balanced"] is True

        resp = client.get(f"/api/batches/{batch_a.id}/movements", headers=mgr)
        rows = resp.get_json()["movements"]
        assert rows[-1]["running_balance"] == resp.get_json()["batch"]["remaining_quantity"]

    def test_adjust_endpoint(self, client, db_session, manager, milk):
        batch = receive(milk, "M-1", 10, day(3))

        resp = client.post("/api/stock-movements/adjust", headers=user_headers(manager), json={
            "batch_id": batch.id, "movement_type": "expired_out", "quantity": 4, "notes": "Spoiled",
        })

        assert resp.status_code == 201
        assert resp.get_json()["movement"]["signed_quantity"] == -4

    def test_delete_load_endpoint(self, client, db_session, manager, milk, truck):
        batch = receive(milk, "M-1", 10, day(3))
        resp = client.post("/api/truck-loads", headers=user_headers(manager), json={
            "truck_id": truck.id,
            "load_date": LOAD_DATE.isoformat(),
            "items": [{"batch_id": batch.id, "quantity_loaded": 6}],
        })
        load_id = resp.get_json()["truck_load"]["id"]

        resp = client.delete(f"/api/truck-loads/{load_id}", headers=user_headers(manager))

        assert resp.status_code == 200
        db_session.expire_all()
        assert db_session.get(Batch, batch.id).remaining_quantity == 10


class TestSystem:

    def test_health_degraded_when_unseeded(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "degraded"

    def test_init_seeds_catalogue_once(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init", "--manager-username", "boss"])
        assert result.exit_code == 0
        assert "Products: 4 created" in result.output

        result = runner.invoke(args=["system", "init", "--manager-username", "boss"])
        assert "Products: 0 created, 4 already present" in result.output

        db_session.expire_all()
        assert db.session.query(Product).count() == 4
        assert db.session.query(User).filter_by(username="boss", role="manager").count() == 1

    def test_ledger_verify(self, app, db_session, milk):
        batch = receive(milk, "M-1", 10, day(3))
        runner = app.test_cli_runner()

        result = runner.invoke(args=["ledger", "verify"])
        assert result.exit_code == 0
        assert "1/1 batches balanced" in result.output

        batch.remaining_quantity = 3
        db_session.commit()

        result = runner.invoke(args=["ledger", "verify", "--batch-id", str(batch.id)])
        assert result.exit_code == 1
        assert "FAIL batch" in result.output
