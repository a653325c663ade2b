from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pos_backend.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
MONEY_TYPE = Numeric(12, 2)

# largest values the id and money columns can hold
MAX_ID = 2**63 - 1
MAX_MONEY = Decimal("9999999999.99")

USER_ROLES = ("admin", "cashier")
USER_STATUSES = ("active", "inactive")
MENU_CATEGORIES = ("Food", "Beverages", "Desserts")
ORDER_TYPES = ("Dine_In", "Take_Away")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'cashier')", name="user_role"),
        CheckConstraint("status IN ('active', 'inactive')", name="user_status"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="cashier")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    orders: Mapped[list["Order"]] = relationship(back_populates="cashier")


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (
        CheckConstraint("category IN ('Food', 'Beverages', 'Desserts')", name="menu_category"),
        CheckConstraint("price > 0", name="menu_price_positive"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    image: Mapped[str | None] = mapped_column(Text)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("order_type IN ('Dine_In', 'Take_Away')", name="order_type"),
        CheckConstraint("amount_paid >= total", name="order_paid_in_full"),
        Index("ix_orders_created_at", "created_at"),
        Index("ix_orders_created_by", "created_by"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    # Assigned from the row id once flushed, see orders.format_order_number.
    order_number: Mapped[str | None] = mapped_column(String(20), unique=True)
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    order_type: Mapped[str] = mapped_column(String(20), nullable=False)
    table_number: Mapped[str | None] = mapped_column(String(20))
    subtotal: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    tax: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    change_amount: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    created_by: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    cashier: Mapped[User] = relationship(back_populates="orders")
    order_items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="order_item_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("menu_items.id", ondelete="SET NULL")
    )
    menu_item_name: Mapped[str] = mapped_column(String(100), nullable=False)
    menu_item_price: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MONEY_TYPE, nullable=False)

    order: Mapped[Order] = relationship(back_populates="order_items")
    menu_item: Mapped[MenuItem | None] = relationship()
