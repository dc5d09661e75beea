"""Billing database models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billsync.core.constants import (
    MAX_CURRENCY_LENGTH,
    MAX_NAME_LENGTH,
    MAX_STATUS_LENGTH,
    MAX_STRIPE_ID_LENGTH,
)
from billsync.core.database import Base, JSONType, TimestampMixin


class PlanType(StrEnum):
    """How a plan is charged."""

    SUBSCRIPTION = "subscription"
    ONE_TIME = "one_time"


class ReferenceType(StrEnum):
    """Kind of billable entity a subscription belongs to."""

    USER = "user"
    ORGANIZATION = "organization"


class SubscriptionStatus(StrEnum):
    """Stripe's subscription status vocabulary."""

    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


# Statuses that grant the plan's entitlements
ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class Plan(Base, TimestampMixin):
    """A purchasable tier.

    Plans are written by the seeding CLI and only read during
    reconciliation. Editing a plan's limits does not touch existing
    subscriptions, which keep the snapshot taken when they were created.
    """

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(
        String(MAX_NAME_LENGTH), unique=True, nullable=False
    )
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PlanType.SUBSCRIPTION.value
    )

    # Stripe prices
    stripe_price_id: Mapped[str] = mapped_column(
        String(MAX_STRIPE_ID_LENGTH), nullable=False, index=True
    )
    stripe_annual_price_id: Mapped[str | None] = mapped_column(
        String(MAX_STRIPE_ID_LENGTH), index=True
    )

    # Pricing (amount stored in cents)
    amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(MAX_CURRENCY_LENGTH), default="usd", nullable=False
    )
    interval: Mapped[str | None] = mapped_column(String(20))  # month, year
    trial_period_days: Mapped[int | None] = mapped_column(Integer)

    # Entitlements: name -> quota, -1 means unlimited
    limits: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict)
    features: Mapped[list[str]] = mapped_column(JSONType, default=list)
    description: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict
    )

    # Catalog display
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, stripe_price_id={self.stripe_price_id})>"


class Subscription(Base, TimestampMixin):
    """This system's copy of a Stripe subscription (a billing record).

    The primary key is the Stripe subscription id, so every event for the
    same subscription lands on the same row. A renewal after cancellation
    gets a new Stripe id and therefore a new row; the current record for a
    billable entity is the one with the latest ``period_start``.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(MAX_STRIPE_ID_LENGTH), primary_key=True)
    plan_id: Mapped[str] = mapped_column(
        ForeignKey("plans.id", ondelete="RESTRICT"), nullable=False
    )

    # Billable entity (immutable once set)
    reference_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    reference_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReferenceType.USER.value
    )

    # Stripe identifiers
    stripe_customer_id: Mapped[str] = mapped_column(
        String(MAX_STRIPE_ID_LENGTH), nullable=False, index=True
    )
    stripe_subscription_id: Mapped[str] = mapped_column(
        String(MAX_STRIPE_ID_LENGTH), unique=True, nullable=False
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(MAX_STATUS_LENGTH), nullable=False, default=SubscriptionStatus.INCOMPLETE.value
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # Billing period
    period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True
    )
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Trial
    trial_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    seats: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Snapshots copied from the plan
    limits: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict
    )

    # Stripe event timestamp of the last applied subscription event
    event_created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    plan: Mapped["Plan"] = relationship(lazy="selectin")

    @property
    def is_entitled(self) -> bool:
        """Whether this record currently grants its plan's limits."""
        return self.status in ENTITLED_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, reference_id={self.reference_id}, "
            f"status={self.status})>"
        )
