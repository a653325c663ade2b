"""Bearer authentication and the role/ownership policy for every route.

Routes declare the ``(resource, action)`` they perform through
``Depends(requires(...))`` and receive a :class:`Grant`. A grant with scope
``own`` restricts the caller to records they created (or, for users, to
their own record); ``all`` is unrestricted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from pos_backend.db import get_db
from pos_backend.errors import Forbidden, Unauthorized
from pos_backend.models import User
from pos_backend.security import decode_token

logger = logging.getLogger(__name__)

ALL = "all"
OWN = "own"

POLICY: dict[tuple[str, str], dict[str, str]] = {
    ("users", "list"): {"admin": ALL},
    ("users", "read"): {"admin": ALL, "cashier": OWN},
    ("users", "write"): {"admin": ALL},
    ("menu", "read"): {"admin": ALL, "cashier": ALL},
    ("menu", "write"): {"admin": ALL},
    ("orders", "read"): {"admin": ALL, "cashier": OWN},
    ("orders", "create"): {"admin": ALL, "cashier": ALL},
    ("reports", "daily-sales"): {"admin": ALL},
    ("reports", "menu-sales"): {"admin": ALL},
    ("reports", "cashier-performance"): {"admin": ALL},
    ("reports", "my-performance"): {"cashier": OWN},
    ("reports", "today-summary"): {"admin": ALL, "cashier": OWN},
    ("reports", "top-selling"): {"admin": ALL},
    ("reports", "revenue-by-type"): {"admin": ALL},
}

bearer_scheme = HTTPBearer(auto_error=False)


def user_id_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> int:
    """Return the ``userId`` claim of a valid bearer token."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Access token required")
    try:
        return int(decode_token(credentials.credentials)["userId"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Token rejected: %s", exc)
        raise Forbidden("Invalid or expired token") from exc


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    # the embedded role claim is informational; the stored record decides
    user = db.get(User, user_id_from_credentials(credentials))
    if not user or user.status != "active":
        raise Forbidden("User not found or inactive")
    return user


def require_role(*roles: str):
    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise Forbidden("Insufficient permissions")
        return user

    return dependency


@dataclass(frozen=True)
class Grant:
    user: User
    scope: str

    @property
    def owner_id(self) -> Optional[int]:
        """Row filter for list queries; None means no restriction."""
        return self.user.id if self.scope == OWN else None

    def ensure_owner(self, owner_id: int, message: str = "Access denied") -> None:
        if self.scope == OWN and owner_id != self.user.id:
            raise Forbidden(message)


def requires(resource: str, action: str):
    rules = POLICY[(resource, action)]

    def dependency(user: User = Depends(require_role(*rules))) -> Grant:
        return Grant(user=user, scope=rules[user.role])

    return dependency
