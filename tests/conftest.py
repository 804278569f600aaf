"""
Pytest fixtures for the back-office tests.

Every test gets a fresh in-memory SQLite database with the same
transaction setup as production (BEGIN IMMEDIATE, foreign keys on).
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.api.auth import get_current_user
from backoffice.database import configure_sqlite, get_db, init_db
from backoffice.main import app
from backoffice.models.catalog import Combination, Product, SpecialProduct, Variant
from backoffice.models.user import User
from backoffice.schemas.order import OrderCreate, OrderItemCreate


@pytest.fixture(scope='function')
def engine():
    """In-memory database shared by every connection of the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope='function')
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture(scope='function')
def user(db):
    """Operator recorded as actor on audit rows."""
    u = User(username="operator", display_name="Operator", password_hash="x", role="admin")
    db.add(u)
    db.commit()
    return u


@pytest.fixture(scope='function')
def client(db, user):
    """Test client bound to the test session, authenticated as ``user``."""
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: user
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(scope='function')
def make_product(db):
    """Create a product directly, bypassing the ledger.

    ``variants`` maps variant value -> stock; when given, ``stock`` is ignored.
    """
    def _make(name=None, stock=0, variants=None, retail_price=100.0, wholesale_price=0.0,
              channel_price=0.0, cost=40.0, additional_prices=None):
        name = name or f"Product {uuid.uuid4().hex[:8]}"
        product = Product(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
            retail_price=retail_price,
            wholesale_price=wholesale_price,
            channel_price=channel_price,
            cost=cost,
            base_stock=0 if variants else stock,
        )
        for value, variant_stock in (variants or {}).items():
            product.variants.append(Variant(
                value=value,
                stock=variant_stock,
                additional_price=(additional_prices or {}).get(value, 0.0),
            ))
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture(scope='function')
def make_special(db):
    """Create a special product over two bases with explicit (option_a, option_b) pairs."""
    def _make(product_a, product_b, pairs, final_price=500.0, cost=None, additional_price=0.0):
        special = SpecialProduct(
            name=f"Set {uuid.uuid4().hex[:8]}",
            slug=f"set-{uuid.uuid4().hex[:8]}",
            base_product_a_id=product_a.id,
            base_product_b_id=product_b.id,
            final_price=final_price,
            cost=cost,
        )
        special.combinations = [
            Combination(option_a=a, option_b=b, additional_price=additional_price) for a, b in pairs
        ]
        db.add(special)
        db.commit()
        db.refresh(special)
        return special

    return _make


@pytest.fixture(scope='function')
def order_data():
    """Build an OrderCreate from (product_id, quantity, extra) tuples."""
    def _build(*lines, source="admin", discount=0.0, tax_rate=0.0, client_name="Client"):
        items = []
        for line in lines:
            product_id, quantity, *extra = line
            items.append(OrderItemCreate(product_id=product_id, quantity=quantity, **(extra[0] if extra else {})))
        return OrderCreate(
            source=source, client_name=client_name, items=items, discount=discount, tax_rate=tax_rate,
        )

    return _build
