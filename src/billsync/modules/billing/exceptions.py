"""Billing error taxonomy.

Reconciliation failures (missing reference, unknown plan) surface to the
webhook boundary, which turns them into a retryable 500 for Stripe. User
actions render them as Problem Details through the global handlers.
"""

from typing import Any

from billsync.core.errors import (
    AppException,
    BadRequestError,
    ForbiddenError,
    ServiceUnavailableError,
)


class AuthenticationError(BadRequestError):
    """Webhook payload is unsigned or its signature does not verify."""

    message = "Invalid webhook signature"
    error_code = "invalid_signature"


class MissingReferenceError(AppException):
    """Subscription event cannot be attributed to a user or organization."""

    message = "Subscription event carries no userId or organizationId"
    error_code = "missing_reference"
    status_code = 422


class UnknownPlanError(AppException):
    """Price id does not resolve to exactly one active plan."""

    message = "No active plan matches the price"
    error_code = "unknown_plan"
    status_code = 422

    def __init__(self, price_id: str | None, message: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        details["price_id"] = price_id
        super().__init__(
            message=message or f"No active plan matches price {price_id!r}",
            details=details,
            **kwargs,
        )


class NotAuthorizedError(ForbiddenError):
    """Acting entity does not own the billing record or organization."""

    message = "Not authorized to manage this subscription"
    error_code = "not_authorized"


class UpstreamUnavailableError(ServiceUnavailableError):
    """Stripe could not be reached or did not answer in time."""

    message = "Payment processor unavailable"
    error_code = "upstream_unavailable"
