"""Test factories for generating test data."""

from tests.factories.billing import (
    SubscriptionEventFactory,
    make_plan,
    make_subscription,
    sign_payload,
    stripe_event,
    stripe_invoice,
    stripe_subscription,
)
from tests.factories.identity import OrganizationFactory, UserFactory, bearer


__all__ = [
    "OrganizationFactory",
    "SubscriptionEventFactory",
    "UserFactory",
    "bearer",
    "make_plan",
    "make_subscription",
    "sign_payload",
    "stripe_event",
    "stripe_invoice",
    "stripe_subscription",
]
