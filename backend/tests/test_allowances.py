# Overview: Pytest coverage for daily transport allowance pools.

"""
Allowance Allocator Tests

Covers:
- Pool cap and per-truck ceiling (whole call rejected on any failure)
- allocated_amount recomputed from entries; status follows it
- Update excludes the truck's own previous amount from the cap check
- Finalized pools are read-only; only pending pools can be deleted
"""

import pytest
from conftest import LOAD_DATE, day

from dairy_ledger.models import Truck, TruckAllowance
from dairy_ledger.services import allowance_service
from dairy_ledger.validation import CapacityError, ConflictError, NotFoundError, ValidationError


@pytest.fixture
def truck_d(db_session):
    t = Truck(truck_number="TRK-004", max_allowance_limit_cents=400000, is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture
def pool(db_session, manager):
    return allowance_service.create_pool(
        allowance_date=LOAD_DATE, total_allowance="10000.00", actor_user_id=manager.id
    )


class TestCreatePool:

    def test_create_pool(self, db_session, pool, manager):
        assert pool.total_allowance_cents == 1000000
        assert pool.allocated_amount_cents == 0
        assert pool.status == "pending"
        assert pool.created_by == manager.id

    def test_one_pool_per_day(self, db_session, pool):
        with pytest.raises(ConflictError):
            allowance_service.create_pool(allowance_date=LOAD_DATE, total_allowance="500.00")

    @pytest.mark.parametrize("total", ["0", "-1", "12.345", None])
    def test_total_must_be_positive_amount(self, db_session, total):
        with pytest.raises(ValidationError):
            allowance_service.create_pool(allowance_date=LOAD_DATE, total_allowance=total)


class TestAllocate:

    def test_allocate_and_cap(self, db_session, pool, truck, truck_b, truck_c, truck_d):
        """10000 pool: 3500 + 2800 + 3000 fits; another 1000 does not."""
        pool = allowance_service.allocate(pool.id, [
            {"truck_id": truck.id, "amount": "3500.00", "distance_covered": 42.5},
            {"truck_id": truck_b.id, "amount": "2800.00"},
            {"truck_id": truck_c.id, "amount": "3000.00"},
        ])

        assert pool.allocated_amount_cents == 930000
        assert pool.remaining_amount_cents == 70000
        assert pool.status == "allocated"
        assert pool.to_dict()["remaining_amount"] == "700.00"

        with pytest.raises(CapacityError) as exc:
            allowance_service.allocate(pool.id, [{"truck_id": truck_d.id, "amount": "1000.00"}])

        assert "Already allocated: 9300.00, remaining: 700.00" in str(exc.value)
        assert db_session.query(TruckAllowance).count() == 3

    def test_truck_ceiling(self, db_session, pool, truck):
        with pytest.raises(CapacityError) as exc:
            allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "4000.01"}])

        assert exc.value.details["limit"] == "4000.00"

    def test_whole_call_rejected_when_one_entry_fails(self, db_session, pool, truck, truck_b):
        with pytest.raises(CapacityError):
            allowance_service.allocate(pool.id, [
                {"truck_id": truck.id, "amount": "1000.00"},
                {"truck_id": truck_b.id, "amount": "5000.00"},
            ])

        assert db_session.query(TruckAllowance).count() == 0

    def test_duplicate_truck_in_call(self, db_session, pool, truck):
        with pytest.raises(ConflictError):
            allowance_service.allocate(pool.id, [
                {"truck_id": truck.id, "amount": "100.00"},
                {"truck_id": truck.id, "amount": "200.00"},
            ])

    def test_truck_already_allocated(self, db_session, pool, truck):
        allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "100.00"}])

        with pytest.raises(ConflictError):
            allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "200.00"}])

    def test_inactive_truck(self, db_session, pool, truck):
        truck.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "100.00"}])

    def test_unknown_pool(self, db_session, truck):
        with pytest.raises(NotFoundError):
            allowance_service.allocate(99999, [{"truck_id": truck.id, "amount": "100.00"}])


class TestUpdateAndRemove:

    def test_update_excludes_own_amount(self, db_session, pool, truck, truck_b):
        allowance_service.allocate(pool.id, [
            {"truck_id": truck.id, "amount": "3500.00"},
            {"truck_id": truck_b.id, "amount": "3000.00"},
        ])

        # 3000 + 4000 <= 10000 even though 3500 + 3000 + 4000 would not be
        pool = allowance_service.update_entry(pool.id, truck.id, amount="4000.00", distance_covered=60)

        assert pool.allocated_amount_cents == 700000
        entry = db_session.query(TruckAllowance).filter_by(truck_id=truck.id).one()
        assert entry.amount_cents == 400000
        assert entry.distance_covered == 60.0

    def test_update_over_pool(self, db_session, truck, truck_b):
        small = allowance_service.create_pool(allowance_date=day(1), total_allowance="5000.00")
        allowance_service.allocate(small.id, [
            {"truck_id": truck.id, "amount": "2000.00"},
            {"truck_id": truck_b.id, "amount": "2000.00"},
        ])

        with pytest.raises(CapacityError):
            allowance_service.update_entry(small.id, truck.id, amount="3500.00")

    def test_update_missing_entry(self, db_session, pool, truck):
        with pytest.raises(NotFoundError):
            allowance_service.update_entry(pool.id, truck.id, amount="10.00")

    def test_remove_returns_to_pending(self, db_session, pool, truck):
        allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "100.00"}])

        pool = allowance_service.remove_entry(pool.id, truck.id)

        assert pool.allocated_amount_cents == 0
        assert pool.status == "pending"
        assert db_session.query(TruckAllowance).count() == 0


class TestFinalizeAndDelete:

    def test_finalize_locks_pool(self, db_session, pool, truck, truck_b, manager):
        allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "100.00"}])

        pool = allowance_service.finalize(pool.id, actor_user_id=manager.id)
        assert pool.status == "finalized"
        assert pool.finalized_by == manager.id

        with pytest.raises(ConflictError):
            allowance_service.allocate(pool.id, [{"truck_id": truck_b.id, "amount": "100.00"}])
        with pytest.raises(ConflictError):
            allowance_service.update_entry(pool.id, truck.id, amount="50.00")
        with pytest.raises(ConflictError):
            allowance_service.remove_entry(pool.id, truck.id)
        with pytest.raises(ConflictError):
            allowance_service.finalize(pool.id)

    def test_finalize_empty_pool(self, db_session, pool):
        assert allowance_service.finalize(pool.id).status == "finalized"

    def test_delete_pending_only(self, db_session, pool, truck):
        allowance_service.allocate(pool.id, [{"truck_id": truck.id, "amount": "100.00"}])

        with pytest.raises(ConflictError):
            allowance_service.delete_pool(pool.id)

        allowance_service.remove_entry(pool.id, truck.id)
        allowance_service.delete_pool(pool.id)
        assert allowance_service.get_pool_for_date(LOAD_DATE) is None

    def test_list_pools(self, db_session, pool):
        allowance_service.create_pool(allowance_date=day(1), total_allowance="100.00")

        assert len(allowance_service.list_pools()) == 2
        assert len(allowance_service.list_pools(start_date=day(1))) == 1

        with pytest.raises(ValidationError):
            allowance_service.list_pools(status="open")
