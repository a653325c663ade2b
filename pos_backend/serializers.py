from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pos_backend.models import MenuItem, Order, OrderItem, User


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _number(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def user_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "status": user.status,
        "createdAt": _iso(user.created_at),
        "updatedAt": _iso(user.updated_at),
    }


def menu_item_dict(menu_item: MenuItem) -> dict:
    return {
        "id": str(menu_item.id),
        "name": menu_item.name,
        "category": menu_item.category,
        "price": _number(menu_item.price),
        "description": menu_item.description,
        "image": menu_item.image,
        "isAvailable": menu_item.is_available,
        "createdAt": _iso(menu_item.created_at),
        "updatedAt": _iso(menu_item.updated_at),
    }


def order_item_dict(item: OrderItem) -> dict:
    data = {
        "id": str(item.id),
        "orderId": str(item.order_id),
        "menuItemId": str(item.menu_item_id) if item.menu_item_id is not None else None,
        "menuItemName": item.menu_item_name,
        "menuItemPrice": _number(item.menu_item_price),
        "quantity": item.quantity,
        "lineTotal": _number(item.line_total),
        "menuItem": None,
    }
    if item.menu_item is not None:
        data["menuItem"] = {
            "id": str(item.menu_item.id),
            "name": item.menu_item.name,
            "category": item.menu_item.category,
        }
    return data


def order_dict(order: Order) -> dict:
    return {
        "id": str(order.id),
        "orderNumber": order.order_number,
        "customerName": order.customer_name,
        "orderType": order.order_type,
        "tableNumber": order.table_number,
        "subtotal": _number(order.subtotal),
        "tax": _number(order.tax),
        "total": _number(order.total),
        "amountPaid": _number(order.amount_paid),
        "changeAmount": _number(order.change_amount),
        "createdBy": str(order.created_by),
        "createdAt": _iso(order.created_at),
        "cashier": {"id": str(order.cashier.id), "username": order.cashier.username},
        "orderItems": [order_item_dict(item) for item in order.order_items],
    }
