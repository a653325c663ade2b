from __future__ import annotations

import math
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Path, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from pos_backend import reports
from pos_backend.auth import Grant, bearer_scheme, requires, user_id_from_credentials
from pos_backend.config import settings
from pos_backend.db import get_db
from pos_backend.errors import (
    Conflict,
    NotFound,
    Unauthorized,
    ValidationError,
    conflict_from_integrity_error,
    register_error_handlers,
)
from pos_backend.logging_config import init_log
from pos_backend.models import MAX_ID, MAX_MONEY, MenuItem, Order, OrderItem, User
from pos_backend.orders import MAX_QUANTITY, LineRequest, create_order
from pos_backend.security import hash_password, issue_token, verify_password
from pos_backend.serializers import menu_item_dict, order_dict, user_dict
from pos_backend.validators import (
    check_menu_fields,
    check_order_fields,
    check_user_fields,
    parse_price,
    raise_for_errors,
)

logger = init_log(__name__)

app = FastAPI(title="POS Backend", version="1.0.0")

app.add_middleware(GZipMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _business_tz() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def _paginate_by_page(query, page: int, limit: int) -> tuple[list[Any], int]:
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"message": "Welcome to POS Backend API", "version": app.version, "status": "running"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {
        "status": "OK",
        "timestamp": _now().isoformat(),
        "env": settings.environment,
    }


@app.get("/api/test-db", tags=["health"])
def test_database(db: Session = Depends(get_db)) -> dict:
    db.execute(text("SELECT 1"))
    return {"status": "OK", "message": "Database connection successful!", "database": db.get_bind().dialect.name}


# Auth


class RegisterRequest(ApiModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"username": "cashier2", "email": "cashier2@example.com", "password": "secret123", "role": "cashier"}
        }
    )
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


class LoginRequest(ApiModel):
    email: Optional[str] = None
    password: Optional[str] = None


@app.post("/api/auth/register", tags=["Auth"], status_code=201)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> dict:
    raise_for_errors(check_user_fields(payload.model_dump(exclude_none=True)))
    if not payload.username or not payload.email or not payload.password or not payload.role:
        raise ValidationError("All fields are required")

    now = _now()
    user = User(
        username=payload.username,
        email=payload.email,
        password=hash_password(payload.password),
        role=payload.role,
        status="active",
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise conflict_from_integrity_error(exc) from exc
    db.refresh(user)
    logger.info("Registered %s user %s", user.role, user.username)
    return {"message": "User created successfully", "user": user_dict(user)}


@app.post("/api/auth/login", tags=["Auth"])
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> dict:
    raise_for_errors(check_user_fields(payload.model_dump(exclude_none=True)))
    if not payload.email or not payload.password:
        raise ValidationError("Email and password are required")

    user = db.query(User).filter(User.email == payload.email).first()
    if not user or user.status != "active":
        raise Unauthorized("Invalid credentials or account inactive")
    if not verify_password(payload.password, user.password):
        raise Unauthorized("Invalid credentials")

    return {
        "message": "Login successful",
        "token": issue_token(user.id, user.role),
        "user": user_dict(user),
    }


@app.get("/api/auth/me", tags=["Auth"])
def read_me(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> dict:
    user = db.get(User, user_id_from_credentials(credentials))
    if not user:
        raise NotFound("User not found")
    return {"user": user_dict(user)}


# Users


class UserUpdate(ApiModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None


@app.get("/api/users", tags=["Users"])
def list_users(
    grant: Grant = Depends(requires("users", "list")),
    db: Session = Depends(get_db),
) -> dict:
    users = db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return {"users": [user_dict(user) for user in users]}


@app.get("/api/users/{user_id}", tags=["Users"])
def get_user(
    user_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("users", "read")),
    db: Session = Depends(get_db),
) -> dict:
    grant.ensure_owner(user_id)
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return {"user": user_dict(user)}


@app.put("/api/users/{user_id}", tags=["Users"])
def update_user(
    payload: UserUpdate,
    user_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("users", "write")),
    db: Session = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_none=True)
    raise_for_errors(check_user_fields(changes))
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if "password" in changes:
        changes["password"] = hash_password(changes["password"])
    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_at = _now()
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise conflict_from_integrity_error(exc) from exc
    db.refresh(user)
    return {"message": "User updated successfully", "user": user_dict(user)}


@app.delete("/api/users/{user_id}", tags=["Users"])
def delete_user(
    user_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("users", "write")),
    db: Session = Depends(get_db),
) -> dict:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if user.id == grant.user.id:
        raise Conflict("You cannot delete your own account")
    if db.query(Order).filter(Order.created_by == user.id).first():
        raise Conflict("User has orders and cannot be deleted; deactivate the account instead")
    db.delete(user)
    db.commit()
    return {"message": "User deleted successfully"}


# Menu


class MenuItemCreate(ApiModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"name": "Es Teh Manis", "category": "Beverages", "price": 5000.0, "description": "Iced sweet tea"}
        }
    )
    name: Optional[str] = None
    category: Optional[str] = None
    price: Any = None
    description: Optional[str] = None
    image: Optional[str] = None
    is_available: Optional[bool] = None


class MenuItemUpdate(MenuItemCreate):
    pass


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


@app.get("/api/menu", tags=["Menu"])
def list_menu_items(
    category: Optional[str] = Query(default=None),
    available: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    grant: Grant = Depends(requires("menu", "read")),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(MenuItem)
    if category:
        query = query.filter(MenuItem.category == category)
    if available is not None:
        query = query.filter(MenuItem.is_available == (available.lower() == "true"))
    elif grant.user.role == "cashier":
        query = query.filter(MenuItem.is_available.is_(True))
    if search:
        query = query.filter(MenuItem.name.ilike(f"%{search}%"))
    menu_items = query.order_by(MenuItem.category, MenuItem.name).all()
    data = [menu_item_dict(menu_item) for menu_item in menu_items]
    return {"menuItems": data, "total": len(data)}


@app.get("/api/menu/{menu_item_id}", tags=["Menu"])
def get_menu_item(
    menu_item_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("menu", "read")),
    db: Session = Depends(get_db),
) -> dict:
    menu_item = db.get(MenuItem, menu_item_id)
    if not menu_item or (grant.user.role == "cashier" and not menu_item.is_available):
        raise NotFound("Menu item not found")
    return {"menuItem": menu_item_dict(menu_item)}


@app.post("/api/menu", tags=["Menu"], status_code=201)
def create_menu_item(
    payload: MenuItemCreate,
    grant: Grant = Depends(requires("menu", "write")),
    db: Session = Depends(get_db),
) -> dict:
    raise_for_errors(check_menu_fields(payload.model_dump(exclude_none=True)))
    if not payload.name or not payload.category or payload.price is None:
        raise ValidationError("Name, category, and price are required")

    now = _now()
    menu_item = MenuItem(
        name=payload.name.strip(),
        category=payload.category,
        price=parse_price(payload.price),
        description=_clean_text(payload.description),
        image=_clean_text(payload.image),
        is_available=True if payload.is_available is None else payload.is_available,
        created_at=now,
        updated_at=now,
    )
    db.add(menu_item)
    db.commit()
    db.refresh(menu_item)
    return {"message": "Menu item created successfully", "menuItem": menu_item_dict(menu_item)}


@app.put("/api/menu/{menu_item_id}", tags=["Menu"])
def update_menu_item(
    payload: MenuItemUpdate,
    menu_item_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("menu", "write")),
    db: Session = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    raise_for_errors(check_menu_fields(changes))
    menu_item = db.get(MenuItem, menu_item_id)
    if not menu_item:
        raise NotFound("Menu item not found")

    if changes.get("name") is not None:
        menu_item.name = changes["name"].strip()
    if changes.get("category") is not None:
        menu_item.category = changes["category"]
    if changes.get("price") is not None:
        menu_item.price = parse_price(changes["price"])
    if "description" in changes:
        menu_item.description = _clean_text(changes["description"])
    if "image" in changes:
        menu_item.image = _clean_text(changes["image"])
    if changes.get("is_available") is not None:
        menu_item.is_available = changes["is_available"]
    menu_item.updated_at = _now()
    db.commit()
    db.refresh(menu_item)
    return {"message": "Menu item updated successfully", "menuItem": menu_item_dict(menu_item)}


@app.delete("/api/menu/{menu_item_id}", tags=["Menu"])
def delete_menu_item(
    menu_item_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("menu", "write")),
    db: Session = Depends(get_db),
) -> dict:
    menu_item = db.get(MenuItem, menu_item_id)
    if not menu_item:
        raise NotFound("Menu item not found")
    # keep historical lines readable; their name/price are snapshots
    db.query(OrderItem).filter(OrderItem.menu_item_id == menu_item.id).update(
        {OrderItem.menu_item_id: None}, synchronize_session=False
    )
    db.delete(menu_item)
    db.commit()
    return {"message": "Menu item deleted successfully"}


# Orders


class OrderLineInput(ApiModel):
    menu_item_id: int = Field(gt=0, le=MAX_ID)
    quantity: int = Field(gt=0, le=MAX_QUANTITY)


class OrderCreate(ApiModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customerName": "Budi",
                "orderType": "Dine_In",
                "tableNumber": "A3",
                "items": [{"menuItemId": "1", "quantity": 2}],
                "amountPaid": 60000,
            }
        }
    )
    customer_name: Optional[str] = None
    order_type: Optional[str] = None
    table_number: Optional[Union[int, str]] = None
    items: Optional[list[OrderLineInput]] = None
    amount_paid: Optional[Decimal] = Field(default=None, ge=0, le=MAX_MONEY)


ORDER_LOADS = (
    joinedload(Order.cashier),
    selectinload(Order.order_items).joinedload(OrderItem.menu_item),
)


def _order_query(db: Session):
    return db.query(Order).options(*ORDER_LOADS)


@app.get("/api/orders", tags=["Orders"])
def list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("orders", "read")),
    db: Session = Depends(get_db),
) -> dict:
    window = reports.resolve_window(start_date, end_date, None, _business_tz())
    query = reports.apply_window(db.query(Order), window)
    if grant.owner_id is not None:
        query = query.filter(Order.created_by == grant.owner_id)
    query = query.options(*ORDER_LOADS).order_by(Order.created_at.desc(), Order.id.desc())
    orders, total = _paginate_by_page(query, page, limit)
    return {
        "orders": [order_dict(order) for order in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
        },
    }


@app.get("/api/orders/{order_id}", tags=["Orders"])
def get_order(
    order_id: int = Path(gt=0, le=MAX_ID),
    grant: Grant = Depends(requires("orders", "read")),
    db: Session = Depends(get_db),
) -> dict:
    order = _order_query(db).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    grant.ensure_owner(order.created_by, "Access denied to this order")
    return {"order": order_dict(order)}


@app.post("/api/orders", tags=["Orders"], status_code=201)
def place_order(
    payload: OrderCreate,
    grant: Grant = Depends(requires("orders", "create")),
    db: Session = Depends(get_db),
) -> dict:
    raise_for_errors(check_order_fields(payload.model_dump(by_alias=True, exclude_none=True)))
    items = None
    if payload.items is not None:
        items = [LineRequest(line.menu_item_id, line.quantity) for line in payload.items]
    order = create_order(
        db,
        user=grant.user,
        customer_name=payload.customer_name,
        order_type=payload.order_type,
        table_number=None if payload.table_number is None else str(payload.table_number),
        items=items,
        amount_paid=payload.amount_paid,
    )
    order = _order_query(db).filter(Order.id == order.id).one()
    return {"message": "Order created successfully", "order": order_dict(order)}


# Reports


def _window(start_date: Optional[str], end_date: Optional[str], default_days: int) -> reports.ReportWindow:
    return reports.resolve_window(start_date, end_date, default_days, _business_tz())


@app.get("/api/reports/daily-sales", tags=["Reports"])
def daily_sales_report(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("reports", "daily-sales")),
    db: Session = Depends(get_db),
) -> dict:
    window = _window(start_date, end_date, reports.DAILY_DEFAULT_DAYS)
    return {"dailySales": reports.daily_sales(db, window, _business_tz())}


@app.get("/api/reports/menu-sales", tags=["Reports"])
def menu_sales_report(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("reports", "menu-sales")),
    db: Session = Depends(get_db),
) -> dict:
    window = _window(start_date, end_date, reports.DEFAULT_DAYS)
    return {"menuSales": reports.menu_sales(db, window)}


@app.get("/api/reports/cashier-performance", tags=["Reports"])
def cashier_performance_report(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("reports", "cashier-performance")),
    db: Session = Depends(get_db),
) -> dict:
    window = _window(start_date, end_date, reports.DEFAULT_DAYS)
    return {"cashierPerformance": reports.cashier_performance(db, window)}


@app.get("/api/reports/my-performance", tags=["Reports"])
def my_performance_report(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("reports", "my-performance")),
    db: Session = Depends(get_db),
) -> dict:
    window = _window(start_date, end_date, reports.DEFAULT_DAYS)
    return {"performance": reports.order_summary(db, window, created_by=grant.owner_id)}


@app.get("/api/reports/today-summary", tags=["Reports"])
def today_summary_report(
    grant: Grant = Depends(requires("reports", "today-summary")),
    db: Session = Depends(get_db),
) -> dict:
    window = reports.today_window(_business_tz())
    summary = reports.order_summary(
        db, window, created_by=grant.owner_id, revenue_key="total_revenue"
    )
    return {"todaySummary": summary}


@app.get("/api/reports/top-selling", tags=["Reports"])
def top_selling_report(
    limit: int = Query(default=reports.TOP_SELLING_DEFAULT_LIMIT, ge=1, le=100),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("reports", "top-selling")),
    db: Session = Depends(get_db),
) -> dict:
    window = _window(start_date, end_date, reports.DEFAULT_DAYS)
    return {"topSelling": reports.top_selling(db, window, limit), "period": window.label}


@app.get("/api/reports/revenue-by-type", tags=["Reports"])
def revenue_by_type_report(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    grant: Grant = Depends(requires("reports", "revenue-by-type")),
    db: Session = Depends(get_db),
) -> dict:
    window = _window(start_date, end_date, reports.DEFAULT_DAYS)
    return {"revenueByType": reports.revenue_by_type(db, window)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", settings.port)))
