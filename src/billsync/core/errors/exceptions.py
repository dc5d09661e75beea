"""Base exceptions for the API.

Each class fixes an HTTP status and a machine-readable ``error_code``; the
handlers in ``handlers.py`` render them as RFC 7807 Problem Details. Billing
errors in ``billsync.modules.billing.exceptions`` subclass these.
"""

from typing import Any


class AppException(Exception):
    """Base exception for all application errors.

    All domain exceptions should inherit from this class.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for clients
        status_code: HTTP status code for the response
        details: Additional error details
    """

    message: str = "An unexpected error occurred"
    error_code: str = "internal_error"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Raised when a requested resource is not found.

    Example:
        raise NotFoundError("Subscription not found", resource_id=subscription_id)
    """

    message = "Resource not found"
    error_code = "not_found"
    status_code = 404

    def __init__(
        self,
        message: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message=message, details=details, **kwargs)


class ConflictError(AppException):
    """Raised when a change conflicts with the current state of a resource.

    Example:
        raise ConflictError("Subscription is canceled")
    """

    message = "Resource conflict"
    error_code = "conflict"
    status_code = 409


class UnauthorizedError(AppException):
    """Raised when authentication is required but not provided or invalid.

    Example:
        raise UnauthorizedError("Invalid access token")
    """

    message = "Authentication required"
    error_code = "unauthorized"
    status_code = 401


class ForbiddenError(AppException):
    """Raised when the caller lacks permission to access a resource.

    Example:
        raise ForbiddenError("Superuser privileges required")
    """

    message = "Access forbidden"
    error_code = "forbidden"
    status_code = 403


class BadRequestError(AppException):
    """Raised for general client errors.

    Example:
        raise BadRequestError("Invalid request format")
    """

    message = "Bad request"
    error_code = "bad_request"
    status_code = 400


class ServiceUnavailableError(AppException):
    """Raised when a dependency the request needs is down or unconfigured.

    The response carries a Retry-After header of ``retry_after`` seconds.

    Example:
        raise ServiceUnavailableError("Stripe is not configured", retry_after=60)
    """

    message = "Service temporarily unavailable"
    error_code = "service_unavailable"
    status_code = 503
    retry_after: int = 30

    def __init__(
        self,
        message: str | None = None,
        retry_after: int | None = None,
        **kwargs: Any,
    ) -> None:
        if retry_after is not None:
            self.retry_after = retry_after
        super().__init__(message=message, **kwargs)
