import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_backend.errors import InsufficientPayment, ItemUnavailable, ValidationError
from pos_backend.models import MAX_MONEY, MenuItem, Order, OrderItem, User

logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.05")
CENT = Decimal("0.01")
ORDER_NUMBER_PREFIX = "ORDR#"
MAX_QUANTITY = 10_000


class LineRequest(NamedTuple):
    menu_item_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    menu_item_id: int
    name: str
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return money(self.price * self.quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(lines: Iterable[PricedLine], tax_rate: Decimal = TAX_RATE) -> OrderTotals:
    subtotal = money(sum((line.line_total for line in lines), Decimal("0")))
    tax = money(subtotal * tax_rate)
    return OrderTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def compute_change(amount_paid: Decimal, total: Decimal) -> Decimal:
    # compared unrounded; 26.245 does not cover 26.25
    if amount_paid < total:
        raise InsufficientPayment(required=total, provided=amount_paid)
    return money(amount_paid - total)


def is_whole_cents(value: Decimal) -> bool:
    return value == value.quantize(CENT)


def format_order_number(order_id: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{order_id:06d}"


def resolve_lines(db: Session, items: list[LineRequest]) -> list[PricedLine]:
    """Snapshot the current name and price of every requested menu item."""
    ids = {item.menu_item_id for item in items}
    menu = {
        menu_item.id: menu_item
        for menu_item in db.scalars(select(MenuItem).where(MenuItem.id.in_(ids)))
    }
    priced = []
    for item in items:
        menu_item = menu.get(item.menu_item_id)
        if menu_item is None or not menu_item.is_available:
            raise ItemUnavailable(item.menu_item_id)
        priced.append(
            PricedLine(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                price=money(menu_item.price),
                quantity=item.quantity,
            )
        )
    return priced


def create_order(
    db: Session,
    *,
    user: User,
    customer_name: Optional[str],
    order_type: Optional[str],
    items: Optional[list[LineRequest]],
    amount_paid: Optional[Decimal],
    table_number: Optional[str] = None,
) -> Order:
    if not customer_name or not order_type or items is None or amount_paid is None:
        raise ValidationError("customerName, orderType, items, and amountPaid are required")
    if not items:
        raise ValidationError("Order must have at least one item")
    bad_quantity = [
        {"field": f"items.{index}.quantity", "message": f"Quantity must be between 1 and {MAX_QUANTITY}"}
        for index, item in enumerate(items)
        if not 1 <= item.quantity <= MAX_QUANTITY
    ]
    if bad_quantity:
        raise ValidationError(errors=bad_quantity)

    lines = resolve_lines(db, items)
    totals = compute_totals(lines)
    if totals.total > MAX_MONEY:
        raise ValidationError(errors=[{"field": "items", "message": "Order total exceeds the maximum amount"}])
    change_amount = compute_change(amount_paid, totals.total)
    if amount_paid > MAX_MONEY or not is_whole_cents(amount_paid):
        raise ValidationError(
            errors=[{"field": "amountPaid", "message": "Amount paid must be a valid amount in whole cents"}]
        )

    order = Order(
        customer_name=customer_name.strip(),
        order_type=order_type,
        table_number=table_number or None,
        subtotal=totals.subtotal,
        tax=totals.tax,
        total=totals.total,
        amount_paid=amount_paid,
        change_amount=change_amount,
        created_by=user.id,
        created_at=datetime.now(timezone.utc),
        order_items=[
            OrderItem(
                menu_item_id=line.menu_item_id,
                menu_item_name=line.name,
                menu_item_price=line.price,
                quantity=line.quantity,
                line_total=line.line_total,
            )
            for line in lines
        ],
    )
    try:
        db.add(order)
        db.flush()
        order.order_number = format_order_number(order.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(order)
    logger.info(
        "Order %s created by user %s: %d lines, total %s",
        order.order_number,
        user.id,
        len(lines),
        order.total,
    )
    return order
