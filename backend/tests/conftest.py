"""
Pytest fixtures for the fulfillment core tests.

Provides an in-memory application, a per-test table wipe, reference data
(tenant, providers, catalog, customers, agents) and an order factory.
"""

import pytest

from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models import (
    CatalogAddon,
    CatalogItem,
    Customer,
    DeliveryAgent,
    Provider,
    Tenant,
)
from fulfillment.services import notification_service, order_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOCK_RETRY_BACKOFF': 0.0,
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
def notifications():
    """Capture notifications sent during a test."""
    received = []

    def sink(kind, message, success, context):
        received.append({"kind": kind, "message": message, "success": success, **context})

    notification_service.register_sink(sink)
    yield received
    notification_service.unregister_sink(sink)


@pytest.fixture(scope='function')
def tenant(db_session):
    tenant = Tenant(name="Test Marketplace", code="TEST")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def provider(db_session, tenant):
    """Restaurant the orders are placed with."""
    provider = Provider(tenant_id=tenant.id, name="Spice Route")
    db_session.add(provider)
    db_session.commit()
    return provider


@pytest.fixture(scope='function')
def other_provider(db_session, tenant):
    provider = Provider(tenant_id=tenant.id, name="Green Grocer", kind="grocery")
    db_session.add(provider)
    db_session.commit()
    return provider


@pytest.fixture(scope='function')
def item_a(db_session, provider):
    """Catalog item priced 100.00."""
    item = CatalogItem(provider_id=provider.id, name="Paneer Tikka", price_cents=10000)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def item_b(db_session, provider):
    """Catalog item priced 50.00 with a 20.00 addon."""
    item = CatalogItem(provider_id=provider.id, name="Masala Dosa", price_cents=5000)
    db_session.add(item)
    db_session.flush()
    db_session.add(CatalogAddon(item_id=item.id, name="Extra Chutney", price_cents=2000))
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def foreign_item(db_session, other_provider):
    item = CatalogItem(provider_id=other_provider.id, name="Tomatoes 1kg", price_cents=4000)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def unavailable_item(db_session, provider):
    item = CatalogItem(provider_id=provider.id, name="Seasonal Special", price_cents=9000, is_available=False)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def customer(db_session, tenant):
    customer = Customer(tenant_id=tenant.id, name="Asha", phone="9000000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(db_session, tenant):
    customer = Customer(tenant_id=tenant.id, name="Ravi", phone="9000000002")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def agents(db_session, tenant):
    """Three online delivery agents."""
    rows = [DeliveryAgent(tenant_id=tenant.id, name=f"Agent{i}") for i in (1, 2, 3)]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def make_order(db_session, provider, customer, item_a):
    """
    Factory: create an order through the service.

    Defaults to two units of item_a (2 x 100.00) with no charges.
    """
    def _make(items=None, **kwargs):
        if items is None:
            items = [{"catalog_item_id": item_a.id, "quantity": 2}]
        kwargs.setdefault("discount_cents", 0)
        kwargs.setdefault("delivery_charge_cents", 0)
        return order_service.create_order(provider.id, customer.id, items, **kwargs)

    return _make


def expected_final(order) -> int:
    """Independent recomputation of the order total from its lines."""
    subtotal = 0
    for item in order.items:
        addon_total = sum(addon["price_cents"] for addon in item.addons)
        subtotal += item.quantity * item.unit_price_cents + addon_total * item.quantity
    return max(0, subtotal - order.discount_cents + order.delivery_charge_cents + order.surcharge_cents)
