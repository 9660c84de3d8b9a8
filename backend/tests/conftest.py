"""
Pytest fixtures for POS engine tests.

Provides test database setup, tenant fixtures, an open shift, an event
recorder subscribed to the bus, and a fake fiscal adapter.
"""

import pytest

from posengine import create_app
from posengine.events import event_bus, EVENT_TYPES
from posengine.extensions import db
from posengine.models import Organization, Store, Register, Product, ProductCost
from posengine.services import fiscal_service, register_service
from posengine.services.fiscal_service import FiscalAdapter, FiscalReceiptResult


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_RETRY_ATTEMPTS': 2,
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
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    """Create Store A in Organization A."""
    store = Store(org_id=org_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, org_a):
    """Second store in Organization A."""
    store = Store(org_id=org_a.id, name="Store A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def register_a(db_session, org_a, store_a):
    register = Register(org_id=org_a.id, store_id=store_a.id, code="REG-01", name="Front Counter")
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture(scope='function')
def product_a(db_session, org_a):
    """Simple product priced 150.00 with a known cost of 90.00."""
    product = Product(org_id=org_a.id, sku="PROD-A-001", name="Product A", base_price_cents=15000)
    db_session.add(product)
    db_session.commit()
    db_session.add(ProductCost(org_id=org_a.id, product_id=product.id, variant_key="BASE", avg_cost_cents=9000))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, org_a):
    """Simple product priced 20.00 with no cost row."""
    product = Product(org_id=org_a.id, sku="PROD-B-001", name="Product B", base_price_cents=2000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def open_shift(db_session, org_a, register_a):
    """Shift opened on register A with 1000.00 in the drawer."""
    shift, _ = register_service.open_shift(org_a.id, register_a.id, 100000, 1, "open-fixture")
    return shift


@pytest.fixture(scope='function')
def events(app):
    """Record every event published during the test as (type, payload)."""
    received = []

    def recorder(event_type, payload):
        received.append((event_type, payload))

    for event_type in EVENT_TYPES:
        event_bus.subscribe(event_type, recorder)
    yield received
    for event_type in EVENT_TYPES:
        event_bus.unsubscribe(event_type, recorder)


class FakeFiscalAdapter(FiscalAdapter):
    provider_key = "fake"

    def __init__(self):
        self.fail = False
        self.drafts = []

    def fiscalize_receipt(self, draft):
        self.drafts.append(draft)
        if self.fail:
            raise RuntimeError("device offline")
        return FiscalReceiptResult(
            provider_receipt_id=f"FR-{draft.receipt_id}",
            raw_json={"receipt": draft.receipt_id},
        )


@pytest.fixture(scope='function')
def fiscal_adapter():
    adapter = FakeFiscalAdapter()
    fiscal_service.register_adapter(adapter)
    yield adapter
    fiscal_service.unregister_adapter(adapter.provider_key)
