"""Factories for plans, billing records and Stripe payloads."""

import hashlib
import hmac
import time
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from polyfactory import Use
from polyfactory.factories.pydantic_factory import ModelFactory

from billsync.modules.billing.models import Plan, Subscription, SubscriptionStatus
from billsync.modules.billing.schemas import SubscriptionEvent


# Month starts in 2026 as Stripe (unix) timestamps
JAN_1 = 1767225600
FEB_1 = 1769904000
MAR_1 = 1772323200

WEBHOOK_SECRET = "whsec_test_secret"


def make_plan(**overrides: Any) -> Plan:
    """Build an unsaved plan."""
    plan_id = overrides.pop("id", f"plan_{uuid4().hex[:8]}")
    values: dict[str, Any] = {
        "id": plan_id,
        "name": plan_id.title(),
        "type": "subscription",
        "stripe_price_id": f"price_{plan_id}_monthly",
        "amount": 1900,
        "currency": "usd",
        "interval": "month",
        "limits": {"projects": 5},
        "features": [],
        "metadata_": {},
        "is_active": True,
        "sort_order": 0,
    }
    values.update(overrides)
    return Plan(**values)


def make_subscription(plan: Plan, reference_id: str, **overrides: Any) -> Subscription:
    """Build an unsaved billing record on ``plan``."""
    subscription_id = overrides.pop("id", f"sub_{uuid4().hex[:14]}")
    values: dict[str, Any] = {
        "id": subscription_id,
        "plan": plan,
        "plan_id": plan.id,
        "reference_id": reference_id,
        "reference_type": "user",
        "stripe_customer_id": f"cus_{uuid4().hex[:14]}",
        "stripe_subscription_id": subscription_id,
        "status": SubscriptionStatus.ACTIVE.value,
        "cancel_at_period_end": False,
        "period_start": datetime.fromtimestamp(JAN_1, tz=UTC),
        "period_end": datetime.fromtimestamp(FEB_1, tz=UTC),
        "seats": 1,
        "limits": dict(plan.limits),
        "metadata_": {},
    }
    values.update(overrides)
    return Subscription(**values)


class SubscriptionEventFactory(ModelFactory[SubscriptionEvent]):
    """Factory for normalized subscription events."""

    __model__ = SubscriptionEvent

    subscription_id = Use(lambda: f"sub_{uuid4().hex[:14]}")
    customer_id = Use(lambda: f"cus_{uuid4().hex[:14]}")
    status = SubscriptionStatus.ACTIVE
    price_id = "price_starter_monthly"
    period_start = Use(lambda: datetime.fromtimestamp(JAN_1, tz=UTC))
    period_end = Use(lambda: datetime.fromtimestamp(FEB_1, tz=UTC))
    trial_start = None
    trial_end = None
    cancel_at_period_end = False
    seats = 1
    metadata = Use(lambda: {"userId": "user_test"})
    event_created_at = Use(lambda: datetime.fromtimestamp(JAN_1, tz=UTC))


# ============================================================
# Stripe payloads
# ============================================================


def stripe_subscription(
    subscription_id: str = "sub_test123",
    *,
    customer: str = "cus_test123",
    status: str = "active",
    price_id: str = "price_starter_monthly",
    period_start: int | None = JAN_1,
    period_end: int | None = FEB_1,
    metadata: dict[str, str] | None = None,
    cancel_at_period_end: bool = False,
    quantity: int = 1,
    trial_start: int | None = None,
    trial_end: int | None = None,
    periods_on_item: bool = False,
) -> dict[str, Any]:
    """A Stripe subscription object as delivered in webhook events.

    With ``periods_on_item`` the period bounds are only reported on the
    subscription item, as newer Stripe API versions do.
    """
    item: dict[str, Any] = {
        "id": f"si_{uuid4().hex[:14]}",
        "object": "subscription_item",
        "price": {"id": price_id, "object": "price"},
        "quantity": quantity,
    }
    subscription: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "trial_start": trial_start,
        "trial_end": trial_end,
        "metadata": metadata if metadata is not None else {"userId": "user_test"},
        "items": {"object": "list", "data": [item]},
    }
    if periods_on_item:
        item["current_period_start"] = period_start
        item["current_period_end"] = period_end
    else:
        subscription["current_period_start"] = period_start
        subscription["current_period_end"] = period_end
    return subscription


def stripe_invoice(
    subscription_id: str | None = "sub_test123", invoice_id: str | None = None
) -> dict[str, Any]:
    """A Stripe invoice object."""
    return {
        "id": invoice_id or f"in_{uuid4().hex[:14]}",
        "object": "invoice",
        "customer": "cus_test123",
        "subscription": subscription_id,
    }


def stripe_event(
    event_type: str,
    obj: dict[str, Any],
    created: int | None = None,
    event_id: str | None = None,
) -> dict[str, Any]:
    """A Stripe event envelope."""
    return {
        "id": event_id or f"evt_{uuid4().hex[:14]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Compute a ``Stripe-Signature`` header for ``payload``."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
