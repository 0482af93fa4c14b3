"""
Error taxonomy and the handlers that turn it into JSON responses.

Service functions raise a ShopError subclass before mutating anything;
the handlers registered here render every failure with the same envelope:

    {"success": false, "error": "<code>", "message": "..."}
"""

import logging
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNAVAILABLE = "unavailable"
    EMPTY_CART = "empty_cart"
    ALREADY_PAID = "already_paid"
    AMOUNT_MISMATCH = "amount_mismatch"
    INVALID_TRANSITION = "invalid_transition"
    INTERNAL = "internal_error"


class ShopError(Exception):
    kind = ErrorKind.INTERNAL
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailed(ShopError):
    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class NotFound(ShopError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Unauthorized(ShopError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class Forbidden(ShopError):
    kind = ErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class Conflict(ShopError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class InsufficientStock(Conflict):
    kind = ErrorKind.INSUFFICIENT_STOCK
    default_message = "Insufficient stock"

    def __init__(self, product_name: str, available: int, requested: Optional[int] = None):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        message = f"Insufficient stock for {product_name}. Available: {available}"
        if requested is not None:
            message += f", Requested: {requested}"
        super().__init__(message)


class Unavailable(ShopError):
    kind = ErrorKind.UNAVAILABLE
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "This item is currently not available"


class EmptyCart(ShopError):
    kind = ErrorKind.EMPTY_CART
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Cart is empty or contains inactive products"


class AlreadyPaid(ShopError):
    kind = ErrorKind.ALREADY_PAID
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "This order has already been paid"


class AmountMismatch(ShopError):
    kind = ErrorKind.AMOUNT_MISMATCH
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment amount does not match order total"


class InvalidTransition(ShopError):
    kind = ErrorKind.INVALID_TRANSITION
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid status transition"


class InternalError(ShopError):
    pass


# =====================================================
# Handlers
# =====================================================

def error_body(kind: ErrorKind, message: str, **extra) -> Dict[str, Any]:
    body = {"success": False, "error": kind.value, "message": message}
    body.update({key: value for key, value in extra.items() if value is not None})
    return body


_HTTP_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    405: ErrorKind.VALIDATION,
    409: ErrorKind.CONFLICT,
}


def _stack_for(request: Request, exc: Exception) -> Optional[str]:
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.show_stack_traces:
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return None


async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc.message, exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            exc.kind,
            exc.message,
            errors=jsonable_encoder(exc.errors) if exc.errors else None,
            stack=_stack_for(request, exc) if exc.status_code >= 500 else None,
        ),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(ErrorKind.VALIDATION, "Validation failed", errors=errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = _HTTP_KINDS.get(exc.status_code, ErrorKind.INTERNAL)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = f"The endpoint {request.url.path} does not exist"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(kind, message),
        headers=getattr(exc, "headers", None),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body(ErrorKind.CONFLICT, "Duplicate entry. Resource already exists"),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            ErrorKind.INTERNAL,
            "Internal server error",
            stack=_stack_for(request, exc),
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
