"""
Pytest fixtures for batch ledger backend tests.

Provides test database setup, store/product fixtures, a batch factory and
test client. Threaded tests get their own file-backed app (see
threaded_app) because :memory: SQLite shares one connection.
"""

from datetime import datetime

import pytest
from batchledger import create_app
from batchledger.extensions import db
from batchledger.models import Product, Store
from batchledger.services import batch_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOG_LEVEL': 'WARNING',
    'BATCH_LOCK_TIMEOUT_SECONDS': 2.0,
    'BATCH_RETRY_BACKOFF_SECONDS': 0.01,
    'DEFAULT_MINIMUM_LEVEL': 10,
    'EXPIRING_SOON_DAYS': 30,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
def store(db_session):
    store = Store(name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(sku="MILK-1L", name="Milk 1L")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def other_product(db_session):
    product = Product(sku="BREAD-WH", name="White Bread")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_batch(db_session, store, product):
    """
    Factory for batches on the default (store, product) line.

    received_date defaults to a fixed instant offset by call order so FIFO
    tie-breaks are deterministic.
    """
    counter = {"n": 0}

    def _make(batch_number, quantity, expiry_date=None, **extra):
        counter["n"] += 1
        data = {
            "store_id": extra.pop("store_id", store.id),
            "product_id": extra.pop("product_id", product.id),
            "batch_number": batch_number,
            "quantity": quantity,
            "expiry_date": expiry_date,
            "received_date": extra.pop(
                "received_date", datetime(2023, 11, 1, 9, 0, counter["n"])
            ),
        }
        data.update(extra)
        return batch_service.create_batch(data)

    return _make


@pytest.fixture(scope='function')
def threaded_app(tmp_path):
    """App bound to a file-backed SQLite database usable from several threads."""
    db_path = tmp_path / "concurrency.db"
    app = create_app({
        **TEST_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'BATCH_LOCK_TIMEOUT_SECONDS': 10.0,
        'BATCH_RETRY_ATTEMPTS': 10,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
