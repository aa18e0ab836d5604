"""
Pytest fixtures for the sale engine tests.

Provides an in-memory database, a per-test table wipe, the engine config and
small factories for products and customers.
"""

import pytest

from wpos import create_app
from wpos.config import SaleEngineConfig
from wpos.extensions import db
from wpos.models import Customer, Product


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'SALE_RETRY_BASE_DELAY': 0,
    'SALE_RETRY_MAX_DELAY': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
    """Fresh tables for each test."""
    db.session.rollback()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.info.clear()


@pytest.fixture(scope='function')
def engine_config(app):
    return app.extensions['sale_engine_config']


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {'n': 0}

    def _make(stock_level=10, price_cents=1000, manufacturer='Acme', category='Widgets', **kwargs):
        counter['n'] += 1
        product = Product(
            sku=kwargs.pop('sku', f"SKU-{counter['n']:04d}"),
            name=kwargs.pop('name', f"Product {counter['n']}"),
            manufacturer=manufacturer,
            category=category,
            price_cents=price_cents,
            stock_level=stock_level,
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Ravi Traders", phone="9000000001", customer_type="wholesaler")
    db_session.add(customer)
    db_session.commit()
    return customer


def payment_details(total, paid=None, pending=0, status='completed', payments=None, method='cash'):
    """Payment details body in major units, defaulting to a single full payment."""
    paid = total if paid is None else paid
    if payments is None:
        payments = [{'amount': paid, 'type': 'full', 'method': method}] if paid else []
    return {
        'total_amount': total,
        'paid_amount': paid,
        'pending_amount': pending,
        'status': status,
        'payments': payments,
    }


def stock_of(product_id):
    return db.session.query(Product.stock_level).filter_by(id=product_id).scalar()


def make_config(**overrides):
    values = dict(retry_base_delay=0, retry_max_delay=0)
    values.update(overrides)
    return SaleEngineConfig(**values)
