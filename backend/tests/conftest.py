"""
Pytest fixtures for dairy ledger backend tests.

Provides test database setup, operator/truck/shop reference rows, and test client.
Reference rows are committed before any service call: write operations open
their own BEGIN IMMEDIATE transaction on SQLite.
"""

from datetime import date, timedelta

import pytest
from dairy_ledger import create_app
from dairy_ledger.extensions import db
from dairy_ledger.models import Product, Shop, Truck, User
from dairy_ledger.models.reference import ROLE_DRIVER, ROLE_MANAGER
from dairy_ledger.services import batch_service
from dairy_ledger.time_utils import today


# Business day used by most tests; batches expire relative to it
LOAD_DATE = today()


def day(offset: int) -> date:
    """LOAD_DATE shifted by offset days."""
    return LOAD_DATE + timedelta(days=offset)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def manager(db_session):
    user = User(username="manager", full_name="Depot Manager", role=ROLE_MANAGER, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def driver(db_session):
    user = User(username="driver_one", full_name="Driver One", role=ROLE_DRIVER, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_driver(db_session):
    user = User(username="driver_two", full_name="Driver Two", role=ROLE_DRIVER, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def milk(db_session):
    """Milk 1L: 220.00 wholesale, 10.00 commission per unit."""
    product = Product(name="Milk 1L", current_wholesale_price_cents=22000, commission_per_unit_cents=1000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def yogurt(db_session):
    """Yogurt: 150.00 wholesale, 5.00 commission per unit."""
    product = Product(name="Yogurt", current_wholesale_price_cents=15000, commission_per_unit_cents=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def truck(db_session, driver):
    """Truck assigned to driver, 4000.00 allowance ceiling."""
    t = Truck(truck_number="TRK-001", driver_id=driver.id, max_allowance_limit_cents=400000, is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def truck_b(db_session, other_driver):
    t = Truck(truck_number="TRK-002", driver_id=other_driver.id, max_allowance_limit_cents=400000, is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def truck_c(db_session):
    t = Truck(truck_number="TRK-003", max_allowance_limit_cents=400000, is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def shop(db_session):
    s = Shop(name="Corner Dairy Shop", location="Main Street", distance=4.5, is_active=True)
    db_session.add(s)
    db_session.commit()
    return s


def receive(product, batch_number: str, quantity: int, expiry: date, note: str | None = None,
            delivery_date: date = LOAD_DATE, actor=None):
    """Helper to receive one batch through a delivery note; returns the Batch."""
    _, batches = batch_service.receive_delivery(
        delivery_date=delivery_date,
        delivery_note_number=note or f"DN-{batch_number}",
        items=[{
            "product_id": product.id,
            "batch_number": batch_number,
            "quantity": quantity,
            "expiry_date": expiry.isoformat(),
        }],
        actor_user_id=actor.id if actor else None,
    )
    return batches[0]


def user_headers(user) -> dict:
    """Helper to create identity headers for a user."""
    return {'X-User-Id': str(user.id)}
