from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pos_backend.db import Base
from pos_backend.main import app, get_db
from pos_backend.models import MenuItem, Order, OrderItem, User
from pos_backend.orders import format_order_number
from pos_backend.security import hash_password, issue_token

PASSWORD = "secret123"


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _save(session_factory, row):
    db = session_factory()
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


@pytest.fixture()
def make_user(session_factory):
    def factory(username: str, role: str = "cashier", status: str = "active") -> User:
        now = datetime.now(timezone.utc)
        return _save(
            session_factory,
            User(
                username=username,
                email=f"{username}@padipos.com",
                password=hash_password(PASSWORD),
                role=role,
                status=status,
                created_at=now,
                updated_at=now,
            ),
        )

    return factory


@pytest.fixture()
def make_menu_item(session_factory):
    def factory(name: str, price: str, category: str = "Food", available: bool = True) -> MenuItem:
        now = datetime.now(timezone.utc)
        return _save(
            session_factory,
            MenuItem(
                name=name,
                category=category,
                price=Decimal(price),
                is_available=available,
                created_at=now,
                updated_at=now,
            ),
        )

    return factory


@pytest.fixture()
def make_order(session_factory):
    """Insert a finished order directly, bypassing pricing, for report fixtures."""

    def factory(
        user: User,
        lines: list[tuple[MenuItem, int]],
        order_type: str = "Dine_In",
        created_at: datetime | None = None,
    ) -> Order:
        order_items = [
            OrderItem(
                menu_item_id=menu_item.id,
                menu_item_name=menu_item.name,
                menu_item_price=menu_item.price,
                quantity=quantity,
                line_total=menu_item.price * quantity,
            )
            for menu_item, quantity in lines
        ]
        subtotal = sum((item.line_total for item in order_items), Decimal("0"))
        tax = (subtotal * Decimal("0.05")).quantize(Decimal("0.01"))
        db = session_factory()
        try:
            order = Order(
                customer_name="Walk-in",
                order_type=order_type,
                subtotal=subtotal,
                tax=tax,
                total=subtotal + tax,
                amount_paid=subtotal + tax,
                change_amount=Decimal("0"),
                created_by=user.id,
                created_at=created_at or datetime.now(timezone.utc),
                order_items=order_items,
            )
            db.add(order)
            db.flush()
            order.order_number = format_order_number(order.id)
            db.commit()
            db.refresh(order)
            return order
        finally:
            db.close()

    return factory


@pytest.fixture()
def count_rows(session_factory):
    def counter(model) -> int:
        db = session_factory()
        try:
            return db.query(model).count()
        finally:
            db.close()

    return counter


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {issue_token(user.id, user.role)}"}


@pytest.fixture()
def headers():
    return auth_headers
