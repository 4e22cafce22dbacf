"""
Pytest configuration and fixtures for tests.

Every test gets a fresh in-memory SQLite database, a fake Redis and the
real services wired together. Telemetry export is switched off before any
application module is imported.
"""

import os
import sys
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OTEL_ENABLED"] = "false"
os.environ["PYROSCOPE_ENABLED"] = "false"

# Add parent directory to Python path so tests can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from fakeredis import FakeRedis
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base, Product, User
from services.cart_service import CartService, CartOwner
from services.cart_merger import CartMerger
from services.checkout_service import CheckoutService, CheckoutDetails
from services.inventory_ledger import InventoryLedger
from services.order_service import OrderService

USER_EMAIL = "user123@example.com"
OTHER_EMAIL = "test@example.com"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_engine():
    """Create test database engine (in-memory SQLite shared by all sessions)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(
        bind=test_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )


@pytest.fixture
def db(session_factory):
    """Create test database session with the two directory users."""
    session = session_factory()
    session.add_all([
        User(email=USER_EMAIL, full_name="Demo User"),
        User(email=OTHER_EMAIL, full_name="Test User"),
    ])
    session.commit()

    yield session

    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a SQLite file, so separate sessions use separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    session = factory()
    session.add_all([
        User(email=USER_EMAIL, full_name="Demo User"),
        User(email=OTHER_EMAIL, full_name="Test User"),
    ])
    session.commit()
    session.close()

    yield factory

    engine.dispose()


@pytest.fixture
def make_product(db):
    """Factory inserting a product and returning it."""
    counter = {"n": 0}

    def _make(name="Widget", price="10.00", stock=10, discount_price=None, active=True, category="General"):
        counter["n"] += 1
        product = Product(
            name=name,
            sku=f"SKU-{counter['n']:04d}",
            price=Decimal(price),
            discount_price=Decimal(discount_price) if discount_price is not None else None,
            stock_quantity=stock,
            active=active,
            category=category
        )
        db.add(product)
        db.commit()
        return product

    return _make


# ============================================================================
# Redis Fixtures
# ============================================================================

@pytest.fixture
def redis_client():
    """Create fake Redis client for testing (no real Redis server needed)."""
    client = FakeRedis(decode_responses=True)
    yield client
    client.flushall()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def inventory():
    return InventoryLedger()


@pytest.fixture
def cart_service(redis_client):
    return CartService(redis_client)


@pytest.fixture
def cart_merger(cart_service):
    return CartMerger(cart_service)


@pytest.fixture
def checkout_service(cart_service, inventory):
    return CheckoutService(cart_service, inventory)


@pytest.fixture
def order_service(inventory):
    return OrderService(inventory)


@pytest.fixture
def user_cart(db, cart_service):
    return cart_service.get_or_create(db, CartOwner.user(USER_EMAIL))


@pytest.fixture
def checkout_details():
    return CheckoutDetails(
        shipping_name="Demo User",
        shipping_address="1 Main Street",
        shipping_city="Springfield",
        shipping_postal_code="12345",
        shipping_country="US",
        payment_method="card"
    )


@pytest.fixture
def place_order(db, cart_service, checkout_service, user_cart, checkout_details):
    """Factory checking out the given (product, quantity) lines for the demo user."""

    def _place(*lines, email=USER_EMAIL):
        cart = user_cart if email == USER_EMAIL else cart_service.get_or_create(db, CartOwner.user(email))
        for product, quantity in lines:
            cart_service.add_item(db, cart, product.id, quantity)
        return checkout_service.checkout(db, email, checkout_details)

    return _place
