"""Billing Pydantic schemas for events, requests and responses."""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .models import ReferenceType, SubscriptionStatus


# Stripe statuses outside the tracked vocabulary
_STATUS_ALIASES = {"incomplete_expired": SubscriptionStatus.CANCELED}


def _to_datetime(value: Any) -> datetime | None:
    """Convert a Stripe unix timestamp to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _stripe_id(value: Any) -> str | None:
    """Return the id of a Stripe reference that may or may not be expanded."""
    if isinstance(value, Mapping):
        return value.get("id")
    return value


# ============================================================
# Stripe events
# ============================================================


class StripeEventData(BaseModel):
    """The ``data`` member of a Stripe event."""

    object: dict[str, Any]


class StripeEvent(BaseModel):
    """Envelope of a verified Stripe webhook event."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int | None = None
    data: StripeEventData

    @property
    def created_at(self) -> datetime | None:
        return _to_datetime(self.created)


class PaymentOutcome(StrEnum):
    """Result of an invoice payment attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SubscriptionEvent(BaseModel):
    """A Stripe subscription object normalized for reconciliation."""

    subscription_id: str
    customer_id: str
    status: SubscriptionStatus
    price_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    seats: int = Field(1, ge=1)
    metadata: dict[str, str] = Field(default_factory=dict)
    event_created_at: datetime | None = None

    @classmethod
    def from_stripe(
        cls, sub: Mapping[str, Any], event_created_at: datetime | None = None
    ) -> "SubscriptionEvent":
        """Build from a Stripe subscription object.

        Newer Stripe API versions report billing period bounds on the
        subscription item rather than on the subscription itself, so the
        first item is used as a fallback.
        """
        items = (sub.get("items") or {}).get("data") or []
        first_item: Mapping[str, Any] = items[0] if items else {}
        price = first_item.get("price") or {}

        return cls(
            subscription_id=sub["id"],
            customer_id=_stripe_id(sub.get("customer")) or "",
            status=_STATUS_ALIASES.get(sub["status"], sub["status"]),
            price_id=_stripe_id(price),
            period_start=_to_datetime(
                sub.get("current_period_start") or first_item.get("current_period_start")
            ),
            period_end=_to_datetime(
                sub.get("current_period_end") or first_item.get("current_period_end")
            ),
            trial_start=_to_datetime(sub.get("trial_start")),
            trial_end=_to_datetime(sub.get("trial_end")),
            cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
            seats=first_item.get("quantity") or 1,
            metadata={k: str(v) for k, v in (sub.get("metadata") or {}).items()},
            event_created_at=event_created_at,
        )

    @property
    def reference(self) -> tuple[str, ReferenceType] | None:
        """The billable entity the subscription belongs to.

        Organization subscriptions take precedence over personal ones.
        Empty strings (checkout sends ``organizationId: ""`` for personal
        plans) count as absent.
        """
        organization_id = self.metadata.get("organizationId")
        if organization_id:
            return organization_id, ReferenceType.ORGANIZATION
        user_id = self.metadata.get("userId")
        if user_id:
            return user_id, ReferenceType.USER
        return None


def invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    """Extract the subscription id an invoice was raised for, if any."""
    subscription = _stripe_id(invoice.get("subscription"))
    if subscription:
        return subscription

    # API versions from 2025 move it under parent.subscription_details
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _stripe_id(details.get("subscription"))


class WebhookAck(BaseModel):
    """Acknowledgement returned to Stripe for a processed event."""

    received: bool = True


# ============================================================
# Plans
# ============================================================


class PlanResponse(BaseModel):
    """Plan details response."""

    id: str
    name: str
    type: str
    stripe_price_id: str
    stripe_annual_price_id: str | None
    amount: int
    currency: str
    interval: str | None
    trial_period_days: int | None
    limits: dict[str, int]
    features: list[str]
    description: str | None
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


# ============================================================
# Subscriptions
# ============================================================


class SubscriptionResponse(BaseModel):
    """Billing record details response."""

    id: str
    plan_id: str
    reference_id: str
    reference_type: str
    stripe_customer_id: str
    stripe_subscription_id: str
    status: str
    period_start: datetime | None
    period_end: datetime | None
    trial_start: datetime | None
    trial_end: datetime | None
    cancel_at_period_end: bool
    seats: int
    limits: dict[str, int]
    plan: PlanResponse | None = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionActionRequest(BaseModel):
    """Request to cancel or reactivate a subscription."""

    organization_id: str | None = Field(
        None, description="Act on behalf of this organization instead of yourself"
    )


class AdminSubscriptionUpdate(BaseModel):
    """Operational fix to a billing record.

    Only these fields may be changed; anything else is rejected.
    """

    model_config = ConfigDict(extra="forbid")

    plan_id: str | None = None
    status: SubscriptionStatus | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool | None = None
    seats: int | None = Field(None, ge=1)
    limits: dict[str, int] | None = None


# ============================================================
# Checkout
# ============================================================


class CheckoutSessionCreate(BaseModel):
    """Request to create a Stripe Checkout session."""

    price_id: str = Field(..., description="Stripe Price ID")
    organization_id: str | None = Field(
        None, description="Subscribe this organization instead of yourself"
    )
    success_url: str | None = Field(
        None, description="URL to redirect after successful payment"
    )
    cancel_url: str | None = Field(
        None, description="URL to redirect if checkout is cancelled"
    )
    quantity: int = Field(1, ge=1, description="Number of seats")


class CheckoutSessionResponse(BaseModel):
    """Response with Checkout session details."""

    session_id: str
    url: str


# ============================================================
# Customer Portal
# ============================================================


class PortalSessionCreate(BaseModel):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = Field(
        None, description="URL to return to after portal session"
    )


class PortalSessionResponse(BaseModel):
    """Response with Customer Portal session details."""

    url: str


# ============================================================
# Entitlements
# ============================================================


class Entitlements(BaseModel):
    """Usage limits in effect for a billable entity."""

    reference_id: str
    limits: dict[str, int]
    source: Literal["subscription", "free_tier"]
    subscription_id: str | None = None


class LimitCheck(BaseModel):
    """Result of checking usage against one limit."""

    limit_key: str
    limit: int
    current_usage: int
    within_limit: bool
    remaining: int | None = Field(None, description="None when unlimited")


class OrganizationAllowance(BaseModel):
    """Whether a user may create another organization."""

    user_id: str
    allowed: bool
    organization_count: int
    limit: int | None = Field(None, description="None when unlimited")
    granted_by: str | None = Field(
        None, description="Organization whose subscription lifts the cap"
    )
