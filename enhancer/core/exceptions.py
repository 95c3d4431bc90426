"""
Custom exception classes and error handling utilities.
"""
from typing import Optional, Dict, Any
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from enhancer.core.config import ErrorCode


class EnhancerException(Exception):
    """Base exception class for the enhancer application."""

    code: ErrorCode = ErrorCode.GENERIC

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# HTTP status per canonical error code
ERROR_STATUS_CODES = {
    ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.SAFETY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorCode.PROCESSING_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.NO_OUTPUT: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.GENERIC: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ProcessingError(EnhancerException):
    """Canonical processing error, the only error shape returned to callers."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = ErrorCode(code)
        super().__init__(
            message=message,
            status_code=ERROR_STATUS_CODES[self.code],
            details=details
        )

    def __repr__(self) -> str:
        return f"ProcessingError(code={self.code.value!r}, message={self.message!r})"


class InsufficientCreditsError(ProcessingError):
    """Insufficient credits for operation."""

    def __init__(self, required: int, available: Optional[int] = None):
        message = f"Insufficient credits. Required: {required}"
        if available is not None:
            message += f", Available: {available}"
        super().__init__(
            ErrorCode.INSUFFICIENT_CREDITS,
            message,
            details={"required_credits": required, "available_credits": available}
        )
        self.required = required
        self.available = available


class StoreError(ProcessingError):
    """Credit store failure other than an insufficient balance."""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(
            ErrorCode.GENERIC,
            message,
            details={"operation": operation} if operation else None
        )


class AuthenticationError(EnhancerException):
    """Authentication related errors."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ModelNotAvailableError(EnhancerException):
    """No enabled backend can serve the request."""

    def __init__(self, message: str, model_id: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"model_id": model_id} if model_id else {}
        )


class BatchLimitExceededError(EnhancerException):
    """Batch admission limit reached for the current window."""

    code = ErrorCode.RATE_LIMITED

    def __init__(self, current: int, limit: int, reset_at: Optional[int] = None):
        super().__init__(
            message=f"Batch limit reached: {current}/{limit} jobs in the current window",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"current": current, "limit": limit, "reset_at": reset_at}
        )


class CatalogError(EnhancerException):
    """Invalid backend descriptor or catalog configuration."""

    def __init__(self, message: str):
        super().__init__(message=message)


class ValidationError(EnhancerException):
    """Data validation errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


# Exception handlers
async def enhancer_exception_handler(request: Request, exc: EnhancerException) -> JSONResponse:
    """Global exception handler for enhancer exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code.value,
                "message": exc.message,
                "type": exc.__class__.__name__,
                "details": exc.details,
                "status_code": exc.status_code
            }
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for plain HTTP errors raised by routers."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": ErrorCode.GENERIC.value,
                "message": exc.detail,
                "type": "HTTPException",
                "status_code": exc.status_code
            }
        }
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unexpected exceptions."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": ErrorCode.GENERIC.value,
                "message": "Internal server error",
                "type": "InternalServerError",
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR
            }
        }
    )
