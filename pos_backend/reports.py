"""Sales reporting.

Each report runs one filtered query for the columns it needs and reduces
the rows in memory. The reducers are plain functions over row-like objects
(anything with the selected attributes), so they can be exercised without a
database.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_backend.errors import ValidationError
from pos_backend.models import MenuItem, Order, OrderItem, User
from pos_backend.orders import money

DAILY_DEFAULT_DAYS = 7
DEFAULT_DAYS = 30
TOP_SELLING_DEFAULT_LIMIT = 10

DINE_IN = "Dine_In"
TAKE_AWAY = "Take_Away"


@dataclass(frozen=True)
class ReportWindow:
    start: Optional[datetime]
    end: Optional[datetime]  # exclusive
    label: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_day(value: datetime, tz: ZoneInfo) -> date:
    return _as_utc(value).astimezone(tz).date()


def _parse_bound(field: str, value: str, tz: ZoneInfo, is_end: bool) -> datetime:
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            if is_end:
                day += timedelta(days=1)
            return datetime.combine(day, time.min, tzinfo=tz)
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(errors=[{"field": field, "message": "Invalid date"}]) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    if is_end:
        parsed += timedelta(microseconds=1)
    return parsed


def resolve_window(
    start_date: Optional[str],
    end_date: Optional[str],
    default_days: Optional[int],
    tz: ZoneInfo,
    now: Optional[datetime] = None,
) -> ReportWindow:
    """Build the filter window from ISO query values.

    A date-only ``end_date`` covers that whole day. A missing ``start_date``
    falls back to ``default_days`` before now (or no lower bound when
    ``default_days`` is None); a missing ``end_date`` leaves the window open.
    """
    now = now or _now()
    start = None
    if start_date:
        start = _parse_bound("startDate", start_date, tz, is_end=False)
    elif default_days is not None:
        start = now - timedelta(days=default_days)
    end = _parse_bound("endDate", end_date, tz, is_end=True) if end_date else None
    if start is not None and end is not None and start >= end:
        raise ValidationError(errors=[{"field": "endDate", "message": "endDate must not precede startDate"}])

    since = f"Last {default_days} days" if default_days is not None else "All time"
    if start_date and end_date:
        label = f"{start_date} to {end_date}"
    elif start_date:
        label = f"Since {start_date}"
    elif end_date:
        label = f"{since} to {end_date}"
    else:
        label = since
    return ReportWindow(start=start, end=end, label=label)


def today_window(tz: ZoneInfo, now: Optional[datetime] = None) -> ReportWindow:
    today = (now or _now()).astimezone(tz).date()
    start = datetime.combine(today, time.min, tzinfo=tz)
    return ReportWindow(start=start, end=start + timedelta(days=1), label=today.isoformat())


def apply_window(stmt, window: ReportWindow):
    if window.start is not None:
        stmt = stmt.where(Order.created_at >= window.start.astimezone(timezone.utc))
    if window.end is not None:
        stmt = stmt.where(Order.created_at < window.end.astimezone(timezone.utc))
    return stmt


def fetch_orders(
    db: Session,
    window: ReportWindow,
    *,
    created_by: Optional[int] = None,
    cashiers_only: bool = False,
) -> Sequence[Any]:
    stmt = select(
        Order.id,
        Order.created_at,
        Order.total,
        Order.order_type,
        Order.created_by,
        User.username,
    ).join(User, Order.created_by == User.id)
    stmt = apply_window(stmt, window)
    if created_by is not None:
        stmt = stmt.where(Order.created_by == created_by)
    if cashiers_only:
        stmt = stmt.where(User.role == "cashier")
    return db.execute(stmt).all()


def fetch_order_items(db: Session, window: ReportWindow) -> Sequence[Any]:
    stmt = (
        select(
            OrderItem.menu_item_name,
            OrderItem.menu_item_price,
            OrderItem.quantity,
            OrderItem.line_total,
            MenuItem.category,
            MenuItem.price.label("current_price"),
        )
        .join(Order, OrderItem.order_id == Order.id)
        .outerjoin(MenuItem, OrderItem.menu_item_id == MenuItem.id)
    )
    return db.execute(apply_window(stmt, window)).all()


def _average(total: Decimal, count: int) -> float:
    if count == 0:
        return 0
    return float(money(total / count))


def summarize_daily_sales(orders: Iterable[Any], tz: ZoneInfo) -> list[dict]:
    days: dict[date, dict] = {}
    for order in orders:
        day = local_day(order.created_at, tz)
        stats = days.setdefault(
            day,
            {"orders": 0, "revenue": Decimal("0"), "dine_in": 0, "takeaway": 0},
        )
        stats["orders"] += 1
        stats["revenue"] += Decimal(order.total)
        if order.order_type == DINE_IN:
            stats["dine_in"] += 1
        elif order.order_type == TAKE_AWAY:
            stats["takeaway"] += 1
    return [
        {
            "sale_date": day.isoformat(),
            "total_orders": stats["orders"],
            "total_revenue": float(money(stats["revenue"])),
            "dine_in_orders": stats["dine_in"],
            "takeaway_orders": stats["takeaway"],
        }
        for day, stats in sorted(days.items(), key=lambda entry: entry[0], reverse=True)
    ]


def summarize_menu_sales(items: Iterable[Any]) -> list[dict]:
    groups: dict[tuple, dict] = {}
    for item in items:
        key = (item.menu_item_name, item.category)
        stats = groups.setdefault(key, {"sold": 0, "sales": Decimal("0")})
        stats["sold"] += item.quantity
        stats["sales"] += Decimal(item.line_total)
    rows = [
        {
            "name": name,
            "category": category,
            "total_sold": stats["sold"],
            "total_sales": float(money(stats["sales"])),
        }
        for (name, category), stats in groups.items()
    ]
    return sorted(rows, key=lambda row: row["total_sold"], reverse=True)


def summarize_cashier_performance(orders: Iterable[Any]) -> list[dict]:
    cashiers: dict[int, dict] = {}
    for order in orders:
        stats = cashiers.setdefault(
            order.created_by,
            {"name": order.username, "orders": 0, "sales": Decimal("0")},
        )
        stats["orders"] += 1
        stats["sales"] += Decimal(order.total)
    rows = [
        {
            "cashier_name": stats["name"],
            "cashier_id": str(cashier_id),
            "total_orders": stats["orders"],
            "total_sales": float(money(stats["sales"])),
            "average_order_value": _average(stats["sales"], stats["orders"]),
        }
        for cashier_id, stats in cashiers.items()
    ]
    return sorted(rows, key=lambda row: row["total_sales"], reverse=True)


def summarize_orders(orders: Iterable[Any], revenue_key: str = "total_sales") -> dict:
    orders = list(orders)
    revenue = sum((Decimal(order.total) for order in orders), Decimal("0"))
    return {
        "total_orders": len(orders),
        revenue_key: float(money(revenue)),
        "average_order_value": _average(revenue, len(orders)),
        "dine_in_orders": sum(1 for order in orders if order.order_type == DINE_IN),
        "takeaway_orders": sum(1 for order in orders if order.order_type == TAKE_AWAY),
    }


def summarize_top_selling(items: Iterable[Any], limit: int = TOP_SELLING_DEFAULT_LIMIT) -> list[dict]:
    groups: dict[str, dict] = {}
    for item in items:
        stats = groups.setdefault(
            item.menu_item_name,
            {
                "category": item.category,
                "price": None,
                "snapshot_price": item.menu_item_price,
                "sold": 0,
                "revenue": Decimal("0"),
            },
        )
        # a row still joined to a live menu item wins over deleted ones
        if stats["price"] is None and item.current_price is not None:
            stats["price"] = item.current_price
            stats["category"] = item.category
        stats["sold"] += item.quantity
        stats["revenue"] += Decimal(item.line_total)
    rows = [
        {
            "name": name,
            "category": stats["category"],
            "price": float(money(stats["price"] if stats["price"] is not None else stats["snapshot_price"])),
            "total_sold": stats["sold"],
            "total_revenue": float(money(stats["revenue"])),
        }
        for name, stats in groups.items()
    ]
    rows.sort(key=lambda row: row["total_sold"], reverse=True)
    return rows[:limit]


def summarize_revenue_by_type(orders: Iterable[Any]) -> list[dict]:
    types: dict[str, dict] = defaultdict(lambda: {"orders": 0, "revenue": Decimal("0")})
    total_orders = 0
    for order in orders:
        total_orders += 1
        types[order.order_type]["orders"] += 1
        types[order.order_type]["revenue"] += Decimal(order.total)
    rows = [
        {
            "order_type": order_type,
            "total_orders": stats["orders"],
            "total_revenue": float(money(stats["revenue"])),
            "average_order_value": _average(stats["revenue"], stats["orders"]),
            "percentage": round(stats["orders"] / total_orders * 100, 2) if total_orders else 0,
        }
        for order_type, stats in types.items()
    ]
    return sorted(rows, key=lambda row: row["total_revenue"], reverse=True)


def daily_sales(db: Session, window: ReportWindow, tz: ZoneInfo) -> list[dict]:
    return summarize_daily_sales(fetch_orders(db, window), tz)


def menu_sales(db: Session, window: ReportWindow) -> list[dict]:
    return summarize_menu_sales(fetch_order_items(db, window))


def cashier_performance(db: Session, window: ReportWindow) -> list[dict]:
    return summarize_cashier_performance(fetch_orders(db, window, cashiers_only=True))


def order_summary(
    db: Session,
    window: ReportWindow,
    created_by: Optional[int] = None,
    revenue_key: str = "total_sales",
) -> dict:
    return summarize_orders(fetch_orders(db, window, created_by=created_by), revenue_key)


def top_selling(db: Session, window: ReportWindow, limit: int = TOP_SELLING_DEFAULT_LIMIT) -> list[dict]:
    return summarize_top_selling(fetch_order_items(db, window), limit)


def revenue_by_type(db: Session, window: ReportWindow) -> list[dict]:
    return summarize_revenue_by_type(fetch_orders(db, window))
