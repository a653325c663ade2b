from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from pos_backend.errors import ValidationError
from pos_backend.reports import (
    resolve_window,
    summarize_cashier_performance,
    summarize_daily_sales,
    summarize_menu_sales,
    summarize_orders,
    summarize_revenue_by_type,
    summarize_top_selling,
    today_window,
)

UTC = ZoneInfo("UTC")
NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


def _order(total: str, order_type: str = "Dine_In", day: int = 19, hour: int = 12, created_by: int = 1, username: str = "cashier1"):
    return SimpleNamespace(
        total=Decimal(total),
        order_type=order_type,
        created_at=datetime(2026, 10, day, hour, 0),
        created_by=created_by,
        username=username,
    )


def _item(name: str, quantity: int, line_total: str, category: str = "Food", price: str = "10.00", current_price=None):
    return SimpleNamespace(
        menu_item_name=name,
        category=category,
        quantity=quantity,
        line_total=Decimal(line_total),
        menu_item_price=Decimal(price),
        current_price=current_price,
    )


def test_daily_sales_groups_by_day_newest_first() -> None:
    orders = [
        _order("10.50", day=17),
        _order("21.00", "Take_Away", day=19),
        _order("5.25", day=19),
    ]
    assert summarize_daily_sales(orders, UTC) == [
        {"sale_date": "2026-10-19", "total_orders": 2, "total_revenue": 26.25, "dine_in_orders": 1, "takeaway_orders": 1},
        {"sale_date": "2026-10-17", "total_orders": 1, "total_revenue": 10.5, "dine_in_orders": 1, "takeaway_orders": 0},
    ]


def test_daily_sales_uses_business_timezone() -> None:
    # 20:00 UTC on the 18th is already the 19th in Jakarta
    rows = summarize_daily_sales([_order("1.00", day=18, hour=20)], ZoneInfo("Asia/Jakarta"))
    assert rows[0]["sale_date"] == "2026-10-19"


def test_daily_sales_with_no_orders_is_empty() -> None:
    assert summarize_daily_sales([], UTC) == []


def test_menu_sales_sorted_by_units() -> None:
    items = [
        _item("Es Teh", 1, "5.00", "Beverages"),
        _item("Nasi Goreng", 2, "50.00"),
        _item("Es Teh", 4, "20.00", "Beverages"),
    ]
    assert summarize_menu_sales(items) == [
        {"name": "Es Teh", "category": "Beverages", "total_sold": 5, "total_sales": 25.0},
        {"name": "Nasi Goreng", "category": "Food", "total_sold": 2, "total_sales": 50.0},
    ]


def test_cashier_performance_averages_and_sorts_by_sales() -> None:
    orders = [
        _order("10.00", created_by=2, username="ani"),
        _order("30.00", created_by=3, username="budi"),
        _order("20.00", created_by=2, username="ani"),
        _order("15.00", created_by=3, username="budi"),
    ]
    rows = summarize_cashier_performance(orders)
    assert [row["cashier_name"] for row in rows] == ["budi", "ani"]
    assert rows[0] == {
        "cashier_name": "budi",
        "cashier_id": "3",
        "total_orders": 2,
        "total_sales": 45.0,
        "average_order_value": 22.5,
    }


def test_summary_of_no_orders_has_zero_average() -> None:
    assert summarize_orders([]) == {
        "total_orders": 0,
        "total_sales": 0.0,
        "average_order_value": 0,
        "dine_in_orders": 0,
        "takeaway_orders": 0,
    }


def test_summary_counts_order_types() -> None:
    summary = summarize_orders(
        [_order("10.00"), _order("20.00", "Take_Away"), _order("30.00", "Take_Away")],
        revenue_key="total_revenue",
    )
    assert summary == {
        "total_orders": 3,
        "total_revenue": 60.0,
        "average_order_value": 20.0,
        "dine_in_orders": 1,
        "takeaway_orders": 2,
    }


def test_top_selling_truncates_and_prefers_live_price() -> None:
    items = [
        _item("A", 3, "30.00", price="10.00", current_price=Decimal("12.00")),
        _item("B", 5, "25.00", price="5.00"),
        _item("C", 1, "7.00", price="7.00"),
    ]
    rows = summarize_top_selling(items, limit=2)
    assert [row["name"] for row in rows] == ["B", "A"]
    assert rows[1]["price"] == 12.0
    assert rows[0]["price"] == 5.0


def test_top_selling_takes_price_from_the_live_item_under_a_reused_name() -> None:
    # "A" was deleted (no live join) and re-created at a new price and category
    items = [
        _item("A", 2, "20.00", category=None, price="10.00"),
        _item("A", 1, "14.00", category="Beverages", price="14.00", current_price=Decimal("15.00")),
    ]
    (row,) = summarize_top_selling(items)
    assert row["price"] == 15.0
    assert row["category"] == "Beverages"
    assert row["total_sold"] == 3
    assert row["total_revenue"] == 34.0


def test_top_selling_falls_back_to_snapshot_price_once_deleted() -> None:
    (row,) = summarize_top_selling([_item("Gone", 4, "18.00", category=None, price="4.50")])
    assert row["price"] == 4.5
    assert row["category"] is None


def test_revenue_by_type_percentages_sum_to_100() -> None:
    orders = [_order("10.00"), _order("10.00"), _order("50.00", "Take_Away")]
    rows = summarize_revenue_by_type(orders)
    assert [row["order_type"] for row in rows] == ["Take_Away", "Dine_In"]
    assert rows[0]["percentage"] == 33.33
    assert rows[1]["percentage"] == 66.67
    assert sum(row["percentage"] for row in rows) == pytest.approx(100, abs=0.01)
    assert rows[1]["average_order_value"] == 10.0


def test_revenue_by_type_empty() -> None:
    assert summarize_revenue_by_type([]) == []


def test_default_window_reaches_back_from_now() -> None:
    window = resolve_window(None, None, 7, UTC, now=NOW)
    assert window.start == datetime(2026, 10, 12, 15, 30, tzinfo=timezone.utc)
    assert window.end is None
    assert window.label == "Last 7 days"


def test_date_only_end_covers_the_whole_day() -> None:
    window = resolve_window("2026-10-01", "2026-10-05", 30, UTC, now=NOW)
    assert window.start == datetime(2026, 10, 1, tzinfo=UTC)
    assert window.end == datetime(2026, 10, 6, tzinfo=UTC)
    assert window.label == "2026-10-01 to 2026-10-05"


def test_window_without_default_is_open() -> None:
    window = resolve_window(None, None, None, UTC, now=NOW)
    assert window.start is None and window.end is None


def test_bad_dates_are_validation_errors() -> None:
    with pytest.raises(ValidationError) as excinfo:
        resolve_window("yesterday", None, 30, UTC, now=NOW)
    assert excinfo.value.errors == [{"field": "startDate", "message": "Invalid date"}]
    with pytest.raises(ValidationError):
        resolve_window("2026-10-05", "2026-10-01", 30, UTC, now=NOW)


def test_today_window_is_local_midnight_to_midnight() -> None:
    window = today_window(ZoneInfo("Asia/Jakarta"), now=NOW)
    jakarta = ZoneInfo("Asia/Jakarta")
    assert window.start == datetime(2026, 10, 19, tzinfo=jakarta)
    assert window.end == datetime(2026, 10, 20, tzinfo=jakarta)
