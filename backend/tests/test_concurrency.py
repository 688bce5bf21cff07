# Overview: Pytest coverage for concurrent writers against a shared database file.

"""
Concurrency Tests

Two writers race for the same scarce resource; exactly one must win and the
stored balances must match the ledger afterwards.

Uses a file-backed SQLite database (in-memory databases share one connection,
so they cannot exercise real write-lock contention).
"""

import threading

import pytest
from conftest import LOAD_DATE, day

from dairy_ledger import create_app
from dairy_ledger.extensions import db
from dairy_ledger.models import Batch, Product, TransportAllowance, Truck, TruckLoad
from dairy_ledger.services import allowance_service, batch_service, truck_load_service
from dairy_ledger.services.ledger_service import replay_batch
from dairy_ledger.validation import CapacityError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
        'LEDGER_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()
        milk = Product(name="Milk 1L", current_wholesale_price_cents=22000, commission_per_unit_cents=1000)
        trucks = [Truck(truck_number=f"TRK-{n}", max_allowance_limit_cents=400000) for n in (1, 2)]
        db.session.add(milk)
        db.session.add_all(trucks)
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _race(app, work):
    """Run work(index) in two threads released together; returns per-thread outcomes."""
    barrier = threading.Barrier(2)
    outcomes = [None, None]

    def runner(index):
        with app.app_context():
            barrier.wait()
            try:
                work(index)
                outcomes[index] = "ok"
            except CapacityError:
                outcomes[index] = "capacity"
            finally:
                db.session.remove()

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_two_loads_cannot_oversell_a_batch(file_app):
    with file_app.app_context():
        milk_id = db.session.query(Product.id).scalar()
        truck_ids = [t.id for t in db.session.query(Truck).order_by(Truck.id).all()]
        _, batches = batch_service.receive_delivery(
            delivery_date=LOAD_DATE,
            delivery_note_number="DN-1",
            items=[{"product_id": milk_id, "batch_number": "M-1", "quantity": 10,
                    "expiry_date": day(3).isoformat()}],
        )
        batch_id = batches[0].id

    def work(index):
        truck_load_service.create_load(
            truck_id=truck_ids[index],
            load_date=LOAD_DATE,
            items=[{"product_id": milk_id, "quantity_loaded": 10}],
        )

    outcomes = _race(file_app, work)

    assert sorted(outcomes) == ["capacity", "ok"]
    with file_app.app_context():
        batch = db.session.get(Batch, batch_id)
        assert batch.remaining_quantity == 0
        assert db.session.query(TruckLoad).count() == 1
        assert replay_batch(batch)["balanced"] is True


def test_two_allocations_cannot_exceed_pool(file_app):
    with file_app.app_context():
        truck_ids = [t.id for t in db.session.query(Truck).order_by(Truck.id).all()]
        pool_id = allowance_service.create_pool(allowance_date=LOAD_DATE, total_allowance="1000.00").id

    def work(index):
        allowance_service.allocate(pool_id, [{"truck_id": truck_ids[index], "amount": "600.00"}])

    outcomes = _race(file_app, work)

    assert sorted(outcomes) == ["capacity", "ok"]
    with file_app.app_context():
        pool = db.session.get(TransportAllowance, pool_id)
        assert pool.allocated_amount_cents == 60000
        assert len(pool.entries) == 1
