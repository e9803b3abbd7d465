from typing import Any


class AppException(Exception):
    """
    Base application exception.

    ``code`` is a stable, machine-readable identifier returned to clients
    alongside the message (several conditions share a status code).
    """

    code = "APP_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
        code: str | None = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    """Validation error."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class AuthenticationError(AppException):
    """Authentication failed."""

    code = "AUTHENTICATION_FAILED"

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, status_code=401)


class AuthorizationError(AppException):
    """Not authorized to perform action."""

    code = "FORBIDDEN"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message=message, status_code=403)


class DuplicateError(AppException):
    """Duplicate resource."""

    code = "DUPLICATE"

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})


class ExhaustedError(AppException):
    """No NCF left to issue: no active batch, or the batch range is used up.

    The remedy is registering a new batch authorized by DGII, never retrying.
    """

    code = "NCF_EXHAUSTED"

    def __init__(self, ncf_type: str, batch_id: int | None = None, message: str | None = None):
        if message is None:
            if batch_id is None:
                message = f"[{ncf_type}] No active NCF batch available. Register a new sequence authorized by DGII."
            else:
                message = f"[{ncf_type}] NCF batch {batch_id} is exhausted. Request a new sequence from DGII."
        super().__init__(
            message=message,
            status_code=409,
            details={"ncf_type": ncf_type, "batch_id": batch_id},
        )


class ExpiredError(AppException):
    """The selected NCF batch is past its expiration date."""

    code = "NCF_EXPIRED"

    def __init__(self, ncf_type: str, batch_id: int, expiration_date: Any):
        message = f"[{ncf_type}] NCF batch {batch_id} expired on {expiration_date}."
        super().__init__(
            message=message,
            status_code=409,
            details={"ncf_type": ncf_type, "batch_id": batch_id, "expiration_date": str(expiration_date)},
        )


class ConcurrencyConflictError(AppException):
    """Compare-and-swap on a batch cursor lost the race.

    Internal to the allocator, which retries on it.
    """

    code = "NCF_CONFLICT"

    def __init__(self, batch_id: int, expected_last_used: int):
        super().__init__(
            message=f"NCF batch {batch_id} changed concurrently (expected last_used={expected_last_used})",
            status_code=409,
            details={"batch_id": batch_id, "expected_last_used": expected_last_used},
        )


class AllocationContentionError(AppException):
    """Allocation gave up after the configured number of conflicting attempts."""

    code = "NCF_CONTENTION"

    def __init__(self, ncf_type: str, attempts: int):
        super().__init__(
            message=f"[{ncf_type}] Could not allocate an NCF after {attempts} attempts. Please try again.",
            status_code=503,
            details={"ncf_type": ncf_type, "attempts": attempts},
        )
