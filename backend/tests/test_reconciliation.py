# Overview: Pytest coverage for the daily reconciliation flow.

"""
Daily Reconciliation Tests

Flow under test: start -> verify each truck -> finalize.

- Declared returns are posted through the truck load manager (truck_return_in)
- Declarations that disagree with the posted figures are flagged, never corrected
- finalize requires every truck verified and freezes the day's totals
- net_profit = commission earned - allowance allocated for the date
"""

import pytest
from conftest import LOAD_DATE, day, receive

from dairy_ledger.models import Batch, ReconciliationItem, StockMovement, TruckLoad
from dairy_ledger.models.inventory import MOVEMENT_TRUCK_RETURN_IN, REF_RECONCILIATION
from dairy_ledger.services import allowance_service, reconciliation_service, sales_service, truck_load_service
from dairy_ledger.validation import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def day_out(db_session, milk, yogurt, truck, truck_b, shop, manager):
    """
    Two trucks out on LOAD_DATE.

    truck:   15 milk loaded, 12 sold (2640.00, commission 120.00), 2000.00 paid
    truck_b: 10 yogurt loaded, 8 sold (1200.00, commission 40.00), paid in full
    allowance: 100.00 + 50.00 allocated from a 10000.00 pool
    """
    m = receive(milk, "M-1", 40, day(3))
    y = receive(yogurt, "Y-1", 30, day(4))
    load_a = truck_load_service.create_load(
        truck_id=truck.id, load_date=LOAD_DATE, items=[{"batch_id": m.id, "quantity_loaded": 15}]
    )
    load_b = truck_load_service.create_load(
        truck_id=truck_b.id, load_date=LOAD_DATE, items=[{"product_id": yogurt.id, "quantity_loaded": 10}]
    )
    sales_service.create_sale(
        shop_id=shop.id, truck_load_id=load_a.id,
        items=[{"product_id": milk.id, "quantity": 12}], amount_paid="2000.00", actor=manager,
    )
    sales_service.create_sale(
        shop_id=shop.id, truck_load_id=load_b.id,
        items=[{"product_id": yogurt.id, "quantity": 8}], amount_paid="1200.00", actor=manager,
    )
    pool = allowance_service.create_pool(allowance_date=LOAD_DATE, total_allowance="10000.00")
    allowance_service.allocate(pool.id, [
        {"truck_id": truck.id, "amount": "100.00"},
        {"truck_id": truck_b.id, "amount": "50.00"},
    ])
    return {"milk_batch": m, "yogurt_batch": y, "load_a": load_a, "load_b": load_b, "pool": pool}


def _verify(truck, returned, discarded=(), notes=None, actor=None):
    return reconciliation_service.verify_truck(
        LOAD_DATE,
        truck.id,
        items_returned=list(returned),
        items_discarded=list(discarded),
        discrepancy_notes=notes,
        actor_user_id=actor.id if actor else None,
    )


class TestStart:

    def test_start_snapshots_each_truck(self, db_session, day_out, manager):
        recon = reconciliation_service.start(LOAD_DATE, actor_user_id=manager.id)

        assert recon.status == "in_progress"
        assert recon.trucks_out == 2
        assert recon.trucks_verified == 0
        assert len(recon.items) == 2
        by_truck = {i.truck_load_id: i for i in recon.items}
        assert by_truck[day_out["load_a"].id].items_sold == 12
        assert by_truck[day_out["load_a"].id].allowance_received_cents == 10000

    def test_start_twice(self, db_session, day_out):
        reconciliation_service.start(LOAD_DATE)

        with pytest.raises(ConflictError):
            reconciliation_service.start(LOAD_DATE)

    def test_day_without_trucks_completes_immediately(self, db_session, manager):
        recon = reconciliation_service.start(day(1), actor_user_id=manager.id)
        assert recon.status == "completed"
        assert recon.trucks_out == 0

        recon = reconciliation_service.finalize(day(1))
        assert recon.status == "finalized"
        assert recon.net_profit_cents == 0
        assert recon.profit_status == "profit"


class TestVerifyTruck:

    def test_matching_declaration(self, db_session, milk, truck, day_out, manager):
        reconciliation_service.start(LOAD_DATE)

        recon = _verify(
            truck,
            [{"product_id": milk.id, "quantity": 2}],
            [{"product_id": milk.id, "quantity": 1, "reason": "damaged"}],
            actor=manager,
        )

        item = db_session.query(ReconciliationItem).filter_by(truck_id=truck.id).one()
        assert item.is_verified is True
        assert item.has_discrepancy is False
        assert item.items_returned == 2
        assert item.items_discarded == 1
        assert item.to_dict()["reported_lines"]["items_discarded"][0]["reason"] == "damaged"
        assert recon.trucks_verified == 1
        assert recon.status == "in_progress"

        load = db_session.get(TruckLoad, day_out["load_a"].id)
        assert load.status == "reconciled"
        assert db_session.get(Batch, day_out["milk_batch"].id).remaining_quantity == 40 - 15 + 2

        ret = db_session.query(StockMovement).filter_by(movement_type=MOVEMENT_TRUCK_RETURN_IN).one()
        assert ret.reference_type == REF_RECONCILIATION
        assert ret.reference_id == recon.id

    def test_over_declared_return_is_capped_and_flagged(self, db_session, milk, truck, day_out):
        reconciliation_service.start(LOAD_DATE)

        _verify(truck, [{"product_id": milk.id, "quantity": 5}], notes="driver count")

        item = db_session.query(ReconciliationItem).filter_by(truck_id=truck.id).one()
        assert item.has_discrepancy is True
        assert item.reported_returned == 5
        assert item.items_returned == 3
        assert item.discrepancy_notes == "driver count"
        assert db_session.get(Batch, day_out["milk_batch"].id).remaining_quantity == 40 - 15 + 3

    def test_unaccounted_units_flagged(self, db_session, milk, truck, day_out):
        reconciliation_service.start(LOAD_DATE)

        _verify(truck, [{"product_id": milk.id, "quantity": 1}])

        item = db_session.query(ReconciliationItem).filter_by(truck_id=truck.id).one()
        assert item.has_discrepancy is True
        assert item.items_discarded == 2

    def test_already_verified(self, db_session, milk, truck, day_out):
        reconciliation_service.start(LOAD_DATE)
        _verify(truck, [{"product_id": milk.id, "quantity": 3}])

        with pytest.raises(ConflictError):
            _verify(truck, [{"product_id": milk.id, "quantity": 3}])

    def test_product_not_on_truck(self, db_session, yogurt, truck, day_out):
        reconciliation_service.start(LOAD_DATE)

        with pytest.raises(ValidationError):
            _verify(truck, [{"product_id": yogurt.id, "quantity": 1}])

    def test_discard_requires_reason(self, db_session, milk, truck, day_out):
        reconciliation_service.start(LOAD_DATE)

        with pytest.raises(ValidationError):
            _verify(truck, [], [{"product_id": milk.id, "quantity": 1}])

    def test_truck_without_load(self, db_session, truck_c, day_out):
        reconciliation_service.start(LOAD_DATE)

        with pytest.raises(NotFoundError):
            _verify(truck_c, [])

    def test_no_reconciliation_for_date(self, db_session, truck):
        with pytest.raises(NotFoundError):
            _verify(truck, [])

    def test_load_reconciled_earlier_is_not_reposted(self, db_session, milk, truck, day_out):
        m = day_out["milk_batch"]
        truck_load_service.reconcile_load(
            day_out["load_a"].id, returns=[{"batch_id": m.id, "quantity_returned": 3}]
        )
        reconciliation_service.start(LOAD_DATE)

        _verify(truck, [{"product_id": milk.id, "quantity": 3}])

        assert db_session.query(StockMovement).filter_by(movement_type=MOVEMENT_TRUCK_RETURN_IN).count() == 1
        item = db_session.query(ReconciliationItem).filter_by(truck_id=truck.id).one()
        assert item.has_discrepancy is False


class TestFinalize:

    def test_requires_every_truck_verified(self, db_session, milk, truck, day_out):
        reconciliation_service.start(LOAD_DATE)
        _verify(truck, [{"product_id": milk.id, "quantity": 3}])

        with pytest.raises(ConflictError) as exc:
            reconciliation_service.finalize(LOAD_DATE)

        assert "Verified: 1, Out: 2" in str(exc.value)

    def test_full_day(self, db_session, milk, yogurt, truck, truck_b, day_out, manager):
        reconciliation_service.start(LOAD_DATE, actor_user_id=manager.id)
        _verify(
            truck,
            [{"product_id": milk.id, "quantity": 2}],
            [{"product_id": milk.id, "quantity": 1, "reason": "leaking"}],
        )
        recon = _verify(truck_b, [{"product_id": yogurt.id, "quantity": 2}])
        assert recon.status == "completed"

        recon = reconciliation_service.finalize(LOAD_DATE, actor_user_id=manager.id)

        assert recon.status == "finalized"
        assert recon.finalized_by == manager.id
        assert recon.total_items_loaded == 25
        assert recon.total_items_sold == 20
        assert recon.total_items_returned == 4
        assert recon.total_items_discarded == 1
        assert recon.total_sales_amount_cents == 264000 + 120000
        assert recon.total_payments_collected_cents == 200000 + 120000
        assert recon.total_pending_payments_cents == 64000
        assert recon.total_commission_earned_cents == 12000 + 4000
        assert recon.total_allowance_allocated_cents == 15000
        assert recon.net_profit_cents == 1000

        data = recon.to_dict()
        assert data["net_profit"] == "10.00"
        assert data["profit_status"] == "profit"

    def test_loss_when_allowance_exceeds_commission(self, db_session, milk, yogurt, truck, truck_b,
                                                    truck_c, day_out):
        allowance_service.allocate(day_out["pool"].id, [{"truck_id": truck_c.id, "amount": "300.00"}])
        reconciliation_service.start(LOAD_DATE)
        _verify(truck, [{"product_id": milk.id, "quantity": 3}])
        _verify(truck_b, [{"product_id": yogurt.id, "quantity": 2}])

        recon = reconciliation_service.finalize(LOAD_DATE)

        # 160.00 commission - 450.00 allocated
        assert recon.net_profit_cents == -29000
        assert recon.profit_status == "loss"
        assert recon.to_dict()["net_profit"] == "-290.00"

    def test_finalized_is_immutable(self, db_session, milk, yogurt, truck, truck_b, day_out):
        reconciliation_service.start(LOAD_DATE)
        _verify(truck, [{"product_id": milk.id, "quantity": 3}])
        _verify(truck_b, [{"product_id": yogurt.id, "quantity": 2}])
        reconciliation_service.finalize(LOAD_DATE)

        with pytest.raises(ConflictError):
            reconciliation_service.finalize(LOAD_DATE)
        with pytest.raises(ConflictError):
            _verify(truck, [{"product_id": milk.id, "quantity": 3}])

    def test_list_by_status(self, db_session, day_out):
        reconciliation_service.start(LOAD_DATE)
        reconciliation_service.start(day(1))

        assert len(reconciliation_service.list_reconciliations()) == 2
        assert len(reconciliation_service.list_reconciliations(status="completed")) == 1

        with pytest.raises(ValidationError):
            reconciliation_service.list_reconciliations(status="closed")
