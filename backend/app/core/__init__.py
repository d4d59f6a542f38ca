"""Core utilities for the Parley backend."""

from .exceptions import (
    AppException,
    AuthenticationError,
    CapacityError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppException",
    "AuthenticationError",
    "CapacityError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "ValidationError",
]
