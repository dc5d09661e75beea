"""Stripe client wrapper for async operations.

The Stripe SDK is synchronous, so every call runs in a worker thread and
is bounded by ``stripe_api_timeout_seconds``. SDK errors are translated
into application exceptions at this boundary so callers never see
``stripe.StripeError`` subclasses.
"""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import stripe
import structlog

from billsync.config import settings
from billsync.core.errors import BadRequestError, ConflictError

from .exceptions import AuthenticationError, UpstreamUnavailableError


logger = structlog.get_logger()

R = TypeVar("R")

# Stripe failures worth retrying later
TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)

# Stripe rejected the request itself
REJECTED_STRIPE_ERRORS = (
    stripe.InvalidRequestError,
    stripe.CardError,
)

# Our credentials are wrong or lack access; retrying will not help
CREDENTIAL_STRIPE_ERRORS = (
    stripe.AuthenticationError,
    stripe.PermissionError,
)


def search_literal(value: str) -> str:
    """Quote a value for the Stripe search query language."""
    escaped = value.replace("'", "\\'")
    return f"'{escaped}'"


def configure_stripe() -> None:
    """Configure the Stripe SDK with API key and retry policy."""
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = settings.stripe_max_network_retries


class StripeClient:
    """Async wrapper for the Stripe operations billing needs."""

    def __init__(self, timeout: float | None = None) -> None:
        configure_stripe()
        self.timeout = timeout or settings.stripe_api_timeout_seconds

    async def _call(
        self, operation: str, func: Callable[..., R], *args: Any, **kwargs: Any
    ) -> R:
        """Run a blocking SDK call in a thread with a deadline.

        Raises:
            UpstreamUnavailableError: On timeout, network, credential or
                other Stripe-side errors
            BadRequestError: If Stripe rejects the request parameters
            ConflictError: If an idempotency key is reused with other parameters
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout
            )
        except TimeoutError as e:
            logger.warning("stripe_timeout", operation=operation, timeout=self.timeout)
            raise UpstreamUnavailableError(
                f"Stripe did not answer {operation} in time"
            ) from e
        except stripe.IdempotencyError as e:
            logger.warning(
                "stripe_idempotency_conflict", operation=operation, error=str(e)
            )
            raise ConflictError(
                "A previous request with the same idempotency key used different "
                "parameters; try again later",
                error_code="idempotency_conflict",
            ) from e
        except TRANSIENT_STRIPE_ERRORS as e:
            logger.warning(
                "stripe_unavailable",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise UpstreamUnavailableError() from e
        except REJECTED_STRIPE_ERRORS as e:
            logger.warning(
                "stripe_rejected",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise BadRequestError(
                e.user_message or str(e), error_code="stripe_rejected"
            ) from e
        except CREDENTIAL_STRIPE_ERRORS as e:
            logger.error(
                "stripe_credentials_rejected",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise UpstreamUnavailableError(
                "Payment processor rejected the configured credentials"
            ) from e
        except stripe.StripeError as e:
            logger.error(
                "stripe_error",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise UpstreamUnavailableError() from e

    # ============================================================
    # Customers
    # ============================================================

    async def find_customer_by_user(self, user_id: str) -> str | None:
        """Find a customer previously created for a user, by metadata.

        Returns:
            The customer id, or None if Stripe has no such customer
        """
        result = await self._call(
            "customer_search",
            stripe.Customer.search,
            query=f"metadata['userId']:{search_literal(user_id)}",
            limit=1,
        )
        return result.data[0].id if result.data else None

    async def create_customer(
        self,
        email: str | None = None,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> stripe.Customer:
        """Create a new Stripe customer."""
        kwargs: dict[str, Any] = {}
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key

        return await self._call(
            "customer_create",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata or {},
            **kwargs,
        )

    # ============================================================
    # Checkout Sessions
    # ============================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        mode: str = "subscription",
        quantity: int = 1,
        metadata: dict[str, str] | None = None,
        trial_period_days: int | None = None,
    ) -> stripe.checkout.Session:
        """Create a Stripe Checkout session.

        In subscription mode the metadata is also copied onto the
        subscription, which is where webhook reconciliation reads it.
        """
        params: dict[str, Any] = {
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": quantity}],
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if mode == "subscription":
            subscription_data: dict[str, Any] = {"metadata": metadata or {}}
            if trial_period_days:
                subscription_data["trial_period_days"] = trial_period_days
            params["subscription_data"] = subscription_data

        return await self._call(
            "checkout_session_create", stripe.checkout.Session.create, **params
        )

    # ============================================================
    # Customer Portal
    # ============================================================

    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> stripe.billing_portal.Session:
        """Create a Stripe Customer Portal session."""
        return await self._call(
            "portal_session_create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    # ============================================================
    # Subscriptions
    # ============================================================

    async def update_subscription(
        self, subscription_id: str, **kwargs: Any
    ) -> stripe.Subscription:
        """Update a Stripe subscription."""
        return await self._call(
            "subscription_update", stripe.Subscription.modify, subscription_id, **kwargs
        )

    # ============================================================
    # Webhooks
    # ============================================================

    @staticmethod
    def verify_webhook(
        payload: bytes,
        sig_header: str | None,
        webhook_secret: str,
        tolerance: int | None = None,
    ) -> None:
        """Verify a webhook signature against the raw request body.

        Raises:
            AuthenticationError: If the header is missing, malformed, stale
                or does not match the payload
        """
        if not sig_header:
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                sig_header,
                webhook_secret,
                tolerance or settings.stripe_webhook_tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise AuthenticationError() from e


# Global client instance
stripe_client = StripeClient()


def get_stripe_client() -> StripeClient:
    """Dependency that provides the Stripe client."""
    return stripe_client
