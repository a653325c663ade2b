"""Seed default accounts and a starter menu.

Run with ``python -m pos_backend.seed``. Rows that already exist (matched on
email or menu item name) are left untouched.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from pos_backend.db import Base, SessionLocal, engine
from pos_backend.logging_config import init_log
from pos_backend.models import MenuItem, User
from pos_backend.security import hash_password

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "admin123"

SEED_USERS = [
    {"username": "admin", "email": "admin@padipos.com", "role": "admin"},
    {"username": "cashier1", "email": "cashier1@padipos.com", "role": "cashier"},
]

SEED_MENU = [
    {
        "name": "Nasi Goreng Spesial",
        "category": "Food",
        "price": Decimal("25000.00"),
        "description": "Nasi goreng dengan ayam, udang, dan telur",
    },
    {
        "name": "Mie Ayam Bakso",
        "category": "Food",
        "price": Decimal("20000.00"),
        "description": "Mie ayam dengan bakso dan pangsit",
    },
    {
        "name": "Es Teh Manis",
        "category": "Beverages",
        "price": Decimal("5000.00"),
        "description": "Teh manis dingin segar",
    },
    {
        "name": "Es Campur",
        "category": "Desserts",
        "price": Decimal("15000.00"),
        "description": "Es campur dengan berbagai topping",
    },
]


def seed(db: Session) -> dict:
    now = datetime.now(timezone.utc)
    hashed = hash_password(DEFAULT_PASSWORD)
    users_created = 0
    for row in SEED_USERS:
        exists = db.query(User).filter(
            (User.email == row["email"]) | (User.username == row["username"])
        ).first()
        if exists:
            continue
        db.add(User(**row, password=hashed, status="active", created_at=now, updated_at=now))
        users_created += 1

    menu_created = 0
    for row in SEED_MENU:
        if db.query(MenuItem).filter(MenuItem.name == row["name"]).first():
            continue
        db.add(MenuItem(**row, is_available=True, created_at=now, updated_at=now))
        menu_created += 1

    db.commit()
    return {"users": users_created, "menu_items": menu_created}


def main() -> None:
    init_log()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        counts = seed(db)
    finally:
        db.close()
    logger.info("Created %d users and %d menu items", counts["users"], counts["menu_items"])


if __name__ == "__main__":
    main()
