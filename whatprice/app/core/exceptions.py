"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

from whatprice.app.core.observability import get_correlation_id

logger = logging.getLogger("whatprice.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidViewRequestError(AppException):
    """Raised when a view event is missing its session or product."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="ERR_VIEW_001",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class InvalidCreditAmountError(AppException):
    """Raised when a ledger credit is zero, negative or carries a negative cost."""

    def __init__(self, message: str = "Credit amount must be greater than 0", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CREDITS_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class InvalidCreditPackageError(AppException):
    """Raised when a purchase does not match a published credit package."""

    def __init__(self, credits: int, amount: Any):
        super().__init__(
            message="Invalid credit package selected",
            error_code="ERR_CREDITS_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"credits": credits, "amount": str(amount)}
        )


class TransactionNotRefundableError(AppException):
    """Raised when a refund targets anything but a completed deduction."""

    def __init__(self, transaction_id: int, reason: str):
        super().__init__(
            message=f"Transaction {transaction_id} cannot be refunded: {reason}",
            error_code="ERR_TXN_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"transaction_id": transaction_id, "reason": reason}
        )


class LedgerConflictError(Exception):
    """
    Raised inside a billing unit of work when a guarded write lost a race.

    Never surfaces to HTTP clients: the unit of work is retried and
    exhausted retries become BillingPersistenceError.
    """
    pass


class BillingPersistenceError(AppException):
    """Raised when a billing write was rolled back. Safe to retry."""

    def __init__(self, message: str = "Billing update could not be committed", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_BILLING_RETRYABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.warning(
            "%s: %s", exc.error_code, exc.message,
            extra={"correlation_id": get_correlation_id(request)}
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception: %s", type(exc).__name__,
        extra={"correlation_id": get_correlation_id(request)}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
