"""
Pytest fixtures for the order engine tests.

Provides an in-memory database, one store with two employees, a plain product,
a batch-tracked product, and the wired OrderEngine.
"""

from datetime import timedelta

import pytest

from smartpos import create_app
from smartpos.extensions import db
from smartpos.models import Batch, Customer, Employee, LoyaltySetting, Product, Stock, Store
from smartpos.services import OrderEngine
from smartpos.services.payment_service import sign_data
from smartpos.time_utils import utctoday


CHECKSUM_KEY = "test-checksum-key"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_CHECKSUM_KEY': CHECKSUM_KEY,
        'PAYMENT_ACCOUNT_NUMBER': '0123456789',
        'PAYMENT_ACCOUNT_NAME': 'DEMO STORE',
        'PAYMENT_BANK_BIN': '970436',
        'QR_EXPIRY_MINUTES': 15,
        'PAYMENT_POLL_INTERVAL_SECONDS': 1.5,
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
def engine(app, db_session):
    """Order engine bound to the test session."""
    return OrderEngine.from_config(db_session, app.config)


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Test Store", code="TS1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Other Store", code="TS2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def seller(db_session, store):
    """Cashier who rings up orders."""
    employee = Employee(store_id=store.id, full_name="Seller", is_active=True)
    db_session.add(employee)
    db_session.commit()
    return employee


@pytest.fixture(scope='function')
def reviewer(db_session, store):
    """Second employee who processes refunds."""
    employee = Employee(store_id=store.id, full_name="Reviewer", is_active=True)
    db_session.add(employee)
    db_session.commit()
    return employee


def make_product(db_session, store, *, sku, price, tax_rate=0, cost_price=None, quantity=0, batches=()):
    """
    Product plus its Stock row. `batches` is a list of (batch_no, qty, expiry);
    when given, the stock quantity is the batch total.
    """
    product = Product(
        store_id=store.id,
        sku=sku,
        name=sku.title(),
        price=price,
        cost_price=cost_price,
        tax_rate=tax_rate,
        is_active=True,
    )
    db_session.add(product)
    db_session.flush()

    if batches:
        quantity = 0
        for batch_no, qty, expiry in batches:
            db_session.add(Batch(product_id=product.id, batch_no=batch_no, quantity=qty, reserved=0, expiry_date=expiry))
            quantity += qty
    db_session.add(Stock(store_id=store.id, product_id=product.id, quantity=quantity, reserved=0))
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, store):
    """10,000 per unit, 10% VAT, 20 on hand, no batches."""
    return make_product(db_session, store, sku="SOAP", price=10000, tax_rate=10, cost_price=7000, quantity=20)


@pytest.fixture(scope='function')
def batch_product(db_session, store):
    """Milk with an expired lot, a near-expiry lot and a long-dated lot."""
    today = utctoday()
    return make_product(
        db_session,
        store,
        sku="MILK",
        price=32000,
        tax_rate=5,
        cost_price=25000,
        batches=[
            ("LOT-OLD", 4, today - timedelta(days=1)),
            ("LOT-SOON", 5, today + timedelta(days=3)),
            ("LOT-LATE", 10, today + timedelta(days=30)),
        ],
    )


@pytest.fixture(scope='function')
def loyalty(db_session, store):
    setting = LoyaltySetting(
        store_id=store.id,
        is_active=True,
        vnd_per_point=100,
        vnd_per_earned_point=20000,
        min_order_value=0,
        min_redeem_points=10,
    )
    db_session.add(setting)
    db_session.commit()
    return setting


@pytest.fixture(scope='function')
def customer(db_session, store):
    customer = Customer(store_id=store.id, name="Lan", phone="0901000001", loyalty_points=500)
    db_session.add(customer)
    db_session.commit()
    return customer


def cart_payload(store, product, *, quantity=2, payment_method="cash", employee=None, **extra) -> dict:
    """POST /api/orders body for a single-line cart."""
    body = {
        "store_id": store.id,
        "employee_id": employee.id if employee is not None else None,
        "payment_method": payment_method,
        "items": [{"product_id": product.id, "quantity": quantity}],
    }
    body.update(extra)
    return body


def signed_webhook(code: int, amount: int, *, reference="FT-0001", provider_code="00", key=CHECKSUM_KEY) -> dict:
    """Provider callback for one payment request, signed like the provider does."""
    data = {
        "accountNumber": "0123456789",
        "amount": amount,
        "description": "payment",
        "orderCode": code,
        "reference": reference,
    }
    return {
        "code": provider_code,
        "desc": "success" if provider_code == "00" else "failed",
        "data": data,
        "signature": sign_data(key, data),
    }
