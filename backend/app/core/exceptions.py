"""Application exception classes and handlers."""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


# --- Validation (400) ---


class ValidationError(AppException):
    """Input rejected before any state was changed."""

    def __init__(self, message: str = "Invalid request") -> None:
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=400)


# --- Authentication (401) ---


class AuthenticationError(AppException):
    """Missing, malformed or expired credential."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message=message, code="AUTHENTICATION_ERROR", status_code=401)


# --- Authorization (403) ---


class ForbiddenError(AppException):
    """Caller is authenticated but may not perform the action."""

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message=message, code="FORBIDDEN", status_code=403)


# --- Not Found (404) ---


class NotFoundError(AppException):
    """Referenced entity does not exist."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message=message, code="NOT_FOUND", status_code=404)


# --- Conflict (409) ---


class CapacityError(AppException):
    """A bounded collection is already full."""

    def __init__(self, message: str = "Capacity exceeded") -> None:
        super().__init__(message=message, code="CAPACITY_EXCEEDED", status_code=409)


class ConflictError(AppException):
    """Uniqueness could not be established."""

    def __init__(self, message: str = "Conflict") -> None:
        super().__init__(message=message, code="CONFLICT", status_code=409)


# --- Exception Handlers ---


def error_payload(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Central exception handler for AppException."""
    return JSONResponse(status_code=exc.status_code, content=error_payload(exc.code, exc.message))


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render FastAPI request validation failures in the shared envelope."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload("VALIDATION_ERROR", message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while processing %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload("INTERNAL_ERROR", "Internal server error"),
    )
