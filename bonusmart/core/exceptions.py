from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


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


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class PaymentRequiredError(AppError):
    def __init__(self, message: str = "There are not enough funds in the account"):
        super().__init__(message, code="INSUFFICIENT_BALANCE", status_code=status.HTTP_402_PAYMENT_REQUIRED)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class UnprocessableError(AppError):
    def __init__(self, message: str = "Incorrect order format", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="INVALID_ORDER_NUMBER",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class InternalError(AppError):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


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
    return error_response(
        request,
        BadRequestError("Incorrect request format", details={"errors": jsonable_encoder(exc.errors())}),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
    """Unknown routes and unsupported methods are reported as bad requests."""
    if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
        return error_response(request, BadRequestError("Wrong request format"))
    return error_response(request, AppError(str(exc.detail), code="HTTP_ERROR", status_code=exc.status_code))


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from bonusmart.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    return error_response(request, InternalError())


async def store_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Store failures that no service translated (driver or connection errors)."""
    from bonusmart.core.logging import get_logger
    get_logger(__name__).error("store_failure", error=str(exc), kind=type(exc).__name__)
    return error_response(request, InternalError())
