"""
Pytest fixtures for Balancey backend tests.

Provides the test app (in-memory SQLite), a per-test table wipe, the test
client, and small factories for customers, products and orders.
"""

from datetime import timedelta

import pytest

from balancey import create_app
from balancey.extensions import db
from balancey.services import customer_service, inventory_service, order_service
from balancey.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
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
        db.session.remove()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_customer(db_session):
    def _make(name="Test Customer", **kwargs):
        return customer_service.create_customer(name=name, **kwargs)
    return _make


@pytest.fixture
def make_product(db_session):
    """Product with a restocked inventory row."""
    def _make(
        name="House Blend",
        *,
        quality="REGULAR",
        sell_mode="WEIGHT",
        price_per_gram_cents=1000,
        price_per_unit_cents=None,
        stock_grams=1000,
        stock_units=0,
    ):
        product = inventory_service.create_product(
            name=name,
            quality=quality,
            sell_mode=sell_mode,
            price_per_gram_cents=price_per_gram_cents,
            unit_name="each" if price_per_unit_cents else None,
            price_per_unit_cents=price_per_unit_cents,
        )
        if stock_grams or stock_units:
            inventory_service.adjust_inventory(
                product.id, "RESTOCK", grams_delta=stock_grams, units_delta=stock_units, note="initial stock"
            )
        return product
    return _make


@pytest.fixture
def make_order(db_session):
    """
    Order for one product by weight.

    paid=True pays the full total up front (the order starts CLOSED).
    """
    def _make(customer, product, grams, *, paid=False, payment_cents=None, **kwargs):
        if paid:
            payment_cents = round(grams * product.price_per_gram_cents) + kwargs.get("delivery_fee_cents", 0)
        return order_service.create_order(
            customer_id=customer.id,
            items=[{"product_id": product.id, "quantity_grams": grams}],
            initial_payment_cents=payment_cents,
            **kwargs,
        )
    return _make


@pytest.fixture
def history(make_order, db_session):
    """
    Closed orders of the given gram sizes, oldest first, one day apart.

    created_at is spread out so "most recent" ordering is deterministic.
    """
    def _make(customer, product, sizes):
        orders = []
        base = utcnow() - timedelta(days=len(sizes) + 1)
        for i, grams in enumerate(sizes):
            order = make_order(customer, product, grams, paid=True)
            order.created_at = base + timedelta(days=i)
            db_session.commit()
            orders.append(order)
        return orders
    return _make
