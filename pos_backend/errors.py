import logging
from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pos_backend.config import settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def body(self) -> dict:
        return {"error": self.message}


class ValidationError(ApiError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: Optional[list[dict]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    def body(self) -> dict:
        if self.errors:
            return {"errors": self.errors}
        return {"error": self.message}


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 400


class ItemUnavailable(ApiError):
    status_code = 400

    def __init__(self, menu_item_id: Any) -> None:
        super().__init__(f"Menu item {menu_item_id} not found or unavailable")
        self.menu_item_id = menu_item_id


class InsufficientPayment(ApiError):
    status_code = 400

    def __init__(self, required: Decimal, provided: Decimal) -> None:
        super().__init__("Insufficient payment amount")
        self.required = required
        self.provided = provided

    def body(self) -> dict:
        return {
            "error": self.message,
            "required": float(self.required),
            "provided": float(self.provided),
        }


UNIQUE_FIELDS = ("email", "username")


def conflict_from_integrity_error(exc: IntegrityError) -> Conflict:
    """Name the colliding column when the driver message mentions one."""
    detail = str(exc.orig).lower()
    for field in UNIQUE_FIELDS:
        if field in detail:
            return Conflict(f"{field.capitalize()} already exists")
    return Conflict("Record already exists")


def _field_name(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code in (401, 403):
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.body())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": _field_name(tuple(error.get("loc", ()))), "message": error.get("msg", "Invalid value")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    content: dict = {"error": exc.detail}
    if exc.status_code == 404 and exc.detail == "Not Found":
        content = {"error": "Route not found", "path": request.url.path, "method": request.method}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.is_development else "Something went wrong",
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
