from datetime import datetime
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Credit / payment taxonomy


class InsufficientCreditError(AppError):
    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        noun = "credit" if required == 1 else "credits"
        super().__init__(
            f"Insufficient credits. This action requires {required} {noun}, but you only have {available}.",
            code="INSUFFICIENT_CREDIT",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"available": available, "required": required, "shortfall": required - available},
        )


class RateLimitedError(AppError):
    def __init__(self, action_kind: str, reset_at: datetime, limit: int = 1):
        self.action_kind = action_kind
        self.reset_at = reset_at
        label = action_kind.replace("_", " ")
        super().__init__(
            f"Free accounts are limited to {limit} {label} per day. Your limit resets at {reset_at.isoformat()}.",
            code="RATE_LIMITED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"action_kind": action_kind, "limit": limit, "reset_at": reset_at.isoformat()},
        )


class InvalidAmountError(AppError):
    def __init__(self, message: str = "Amount must be a positive integer"):
        super().__init__(message, code="INVALID_AMOUNT", status_code=status.HTTP_400_BAD_REQUEST)


class InvalidSignatureError(AppError):
    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message, code="INVALID_SIGNATURE", status_code=status.HTTP_400_BAD_REQUEST)


class OrderNotFoundError(AppError):
    def __init__(self, gateway_order_id: str):
        super().__init__(
            "Payment order not found",
            code="ORDER_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"gateway_order_id": gateway_order_id},
        )


class GatewayError(AppError):
    def __init__(self, message: str = "Payment gateway error", details: dict[str, Any] | None = None):
        super().__init__(message, code="GATEWAY_ERROR", status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class StorageConflictError(AppError):
    def __init__(self, message: str = "Storage conflict, please retry"):
        super().__init__(message, code="STORAGE_CONFLICT", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class GenerationFailedError(AppError):
    def __init__(self, message: str = "Text generation failed", details: dict[str, Any] | None = None):
        super().__init__(message, code="GENERATION_FAILED", status_code=status.HTTP_502_BAD_GATEWAY, details=details)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
