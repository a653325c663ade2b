"""Field-level checks run before a handler touches the database.

Only fields present in the payload are checked; required-ness is decided
by each handler. Every violation is collected so the caller can report
them together.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from email_validator import EmailNotValidError, validate_email

from pos_backend.errors import ValidationError
from pos_backend.models import MAX_MONEY, MENU_CATEGORIES, ORDER_TYPES, USER_ROLES, USER_STATUSES
from pos_backend.orders import is_whole_cents

USERNAME_MIN_LENGTH = 3
PASSWORD_MIN_LENGTH = 6


def _present(data: Mapping[str, Any], field: str) -> bool:
    return data.get(field) is not None


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def parse_price(value: Any) -> Decimal | None:
    """Return the value as a positive Decimal in whole cents that fits the
    price column, or None when it is not one."""
    if isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    if price > MAX_MONEY or not is_whole_cents(price):
        return None
    return price


def check_user_fields(data: Mapping[str, Any]) -> list[dict]:
    errors: list[dict] = []
    if _present(data, "email") and not is_valid_email(data["email"]):
        errors.append({"field": "email", "message": "Please provide valid email"})
    if _present(data, "username") and len(str(data["username"])) < USERNAME_MIN_LENGTH:
        errors.append({"field": "username", "message": "Username must be at least 3 characters"})
    if _present(data, "password") and len(str(data["password"])) < PASSWORD_MIN_LENGTH:
        errors.append({"field": "password", "message": "Password must be at least 6 characters"})
    if _present(data, "role") and data["role"] not in USER_ROLES:
        errors.append({"field": "role", "message": "Invalid role"})
    if _present(data, "status") and data["status"] not in USER_STATUSES:
        errors.append({"field": "status", "message": "Invalid status"})
    return errors


def check_menu_fields(data: Mapping[str, Any]) -> list[dict]:
    errors: list[dict] = []
    if _present(data, "name") and not str(data["name"]).strip():
        errors.append({"field": "name", "message": "Name is required"})
    if _present(data, "category") and data["category"] not in MENU_CATEGORIES:
        errors.append({"field": "category", "message": "Invalid category"})
    if _present(data, "price") and parse_price(data["price"]) is None:
        errors.append({"field": "price", "message": "Price must be a positive amount in whole cents, at most 9999999999.99"})
    return errors


def check_order_fields(data: Mapping[str, Any]) -> list[dict]:
    errors: list[dict] = []
    if _present(data, "orderType") and data["orderType"] not in ORDER_TYPES:
        errors.append({"field": "orderType", "message": "Invalid order type"})
    if _present(data, "customerName") and not str(data["customerName"]).strip():
        errors.append({"field": "customerName", "message": "Customer name is required"})
    return errors


def raise_for_errors(errors: list[dict]) -> None:
    if errors:
        raise ValidationError(errors=errors)
