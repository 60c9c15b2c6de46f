"""
Application exception hierarchy and FastAPI exception handlers
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException


logger = logging.getLogger(__name__)


class AppException(Exception):
    """
    Base exception carrying an HTTP status code and a client-facing message
    """
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.message = message or self.message
        self.details = details or {}
        self.headers = headers
        super().__init__(self.message)


class BadRequest(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "bad_request"
    message = "Bad request"


class Unauthorized(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "unauthorized"
    message = "Access token required"


class NotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"
    message = "Resource not found"


class InvalidSignature(AppException):
    """Webhook payload failed provider signature verification."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "invalid_signature"
    message = "Webhook signature verification failed"


class RateLimited(AppException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "rate_limited"
    message = "Rate limit exceeded"


class BillingProviderError(AppException):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "billing_provider_error"
    message = "Billing provider request failed"


class StorageUnavailable(AppException):
    """The backing store could not be reached or rejected the operation."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "storage_unavailable"
    message = "Storage temporarily unavailable"


def _error_body(message: str, error_code: str, details: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"message": message, "error_code": error_code}
    if details:
        body["details"] = details
    return body


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.error_code, exc.details),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        content = {"message": detail.get("message", "Request failed"), **detail}
    else:
        content = {"message": str(detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(f"Database error on {request.url.path}: {exc}")
    unavailable = StorageUnavailable()
    return JSONResponse(
        status_code=unavailable.status_code,
        content=_error_body(unavailable.message, unavailable.error_code),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_body(
            "Request validation failed",
            "validation_error",
            {"errors": jsonable_encoder(exc.errors())},
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Attach the JSON error handlers to the application
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
