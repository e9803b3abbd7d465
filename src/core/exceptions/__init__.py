from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    DuplicateError,
    ExhaustedError,
    ExpiredError,
    ConcurrencyConflictError,
    AllocationContentionError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "DuplicateError",
    "ExhaustedError",
    "ExpiredError",
    "ConcurrencyConflictError",
    "AllocationContentionError",
]
