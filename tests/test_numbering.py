import re
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backoffice.config import settings
from backoffice.database import configure_sqlite, init_db, run_with_retry
from backoffice.models.catalog import Product
from backoffice.models.inventory import InventoryLog
from backoffice.models.order import Order
from backoffice.models.sequence import SequenceCounter
from backoffice.schemas.order import OrderCreate, OrderItemCreate
from backoffice.services import inventory_service, numbering_service, order_service


def test_format_number():
    assert numbering_service.format_number("ORD", 2026, 42) == "ORD-2026-000042"
    assert numbering_service.format_number("INV", 2026, 1234567) == "INV-2026-1234567"


def test_counter_increments_per_scope(db):
    first = numbering_service.next_number(db, "ORD", Order.order_number, year=2026)
    second = numbering_service.next_number(db, "ORD", Order.order_number, year=2026)
    other_year = numbering_service.next_number(db, "ORD", Order.order_number, year=2027)
    db.commit()
    assert (first, second, other_year) == ("ORD-2026-000001", "ORD-2026-000002", "ORD-2027-000001")
    assert db.get(SequenceCounter, "ORD-2026").value == 2


def test_skips_numbers_already_taken(db, make_product, order_data, user):
    chair = make_product(stock=10)
    order = order_service.create_order(db, order_data((chair.id, 1)), user.id)
    year = int(order.order_number.split("-")[1])
    # Counter lags behind an imported number
    db.get(SequenceCounter, f"ORD-{year}").value = 0
    db.commit()

    number = numbering_service.next_number(db, "ORD", Order.order_number, year=year)
    assert number == f"ORD-{year}-000002"


def test_falls_back_to_time_based_number(db, make_product, order_data, user, monkeypatch):
    monkeypatch.setattr(settings, "NUMBER_MAX_ATTEMPTS", 1)
    chair = make_product(stock=10)
    order = order_service.create_order(db, order_data((chair.id, 1)), user.id)
    year = int(order.order_number.split("-")[1])
    db.get(SequenceCounter, f"ORD-{year}").value = 0
    db.commit()

    number = numbering_service.next_number(db, "ORD", Order.order_number, year=year)
    assert re.fullmatch(r"ORD-\d{13}", number)


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory over a file database, one connection per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    configure_sqlite(engine)
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


def _seed_product(Session, stock):
    with Session() as session:
        product = Product(name="Stool", slug="stool", retail_price=10.0, cost=4.0, base_stock=stock)
        session.add(product)
        session.commit()
        return product.id


def test_concurrent_orders_get_distinct_numbers(file_sessions):
    product_id = _seed_product(file_sessions, stock=100)
    data = OrderCreate(client_name="Walk-in", items=[OrderItemCreate(product_id=product_id, quantity=1)])

    def place(_):
        with file_sessions() as session:
            order = run_with_retry(session, lambda: order_service.create_order(session, data, "clerk"))
            return order.order_number

    with ThreadPoolExecutor(max_workers=8) as pool:
        numbers = list(pool.map(place, range(24)))

    assert len(set(numbers)) == 24
    with file_sessions() as session:
        assert session.query(Order).count() == 24


def test_concurrent_adjustments_lose_no_update(file_sessions):
    product_id = _seed_product(file_sessions, stock=30)

    def sell(_):
        with file_sessions() as session:
            run_with_retry(
                session,
                lambda: inventory_service.adjust_stock(session, product_id, "regular", -1, "sale", "clerk"),
            )

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(sell, range(20)))

    with file_sessions() as session:
        assert session.get(Product, product_id).base_stock == 10
        logs = session.query(InventoryLog).filter(InventoryLog.product_id == product_id).all()
        assert len(logs) == 20
        assert sorted(log.quantity_after for log in logs) == list(range(10, 30))
