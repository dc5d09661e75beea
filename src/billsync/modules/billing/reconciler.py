"""Subscription reconciliation.

The reconciler is the only writer of billing records. Stripe events and
user actions both end up here, so the rules that keep the local copy
consistent with Stripe live in one place:

- a record is keyed by the Stripe subscription id and upserted, so
  redelivered events are harmless
- ``canceled`` is terminal for a record id; renewals arrive as new ids
- events older than what is stored are skipped, not applied
- local cancel-flag changes happen only after Stripe accepted them
"""

from typing import Annotated, Any

import structlog
from fastapi import Depends

from billsync.core.errors import BadRequestError, ConflictError, NotFoundError

from .exceptions import MissingReferenceError, NotAuthorizedError, UnknownPlanError
from .models import Plan, Subscription, SubscriptionStatus
from .repos import BillingRepository
from .schemas import AdminSubscriptionUpdate, PaymentOutcome, SubscriptionEvent
from .stripe_client import StripeClient, get_stripe_client


logger = structlog.get_logger()

_OUTCOME_STATUS = {
    PaymentOutcome.SUCCEEDED: SubscriptionStatus.ACTIVE,
    PaymentOutcome.FAILED: SubscriptionStatus.PAST_DUE,
}


class SubscriptionReconciler:
    """Applies Stripe events and user actions to billing records."""

    def __init__(
        self,
        repo: Annotated[BillingRepository, Depends()],
        stripe: Annotated[StripeClient, Depends(get_stripe_client)],
    ) -> None:
        self.repo = repo
        self.stripe = stripe

    async def resolve_plan(self, price_id: str | None) -> Plan:
        """Find the single active plan sold at ``price_id``.

        Raises:
            UnknownPlanError: If no plan or more than one plan matches
        """
        if not price_id:
            raise UnknownPlanError(price_id, "Subscription carries no price")

        plans = await self.repo.find_active_plans_by_price(price_id)
        if not plans:
            raise UnknownPlanError(price_id)
        if len(plans) > 1:
            matches = [plan.id for plan in plans]
            raise UnknownPlanError(
                price_id,
                f"Price {price_id!r} is ambiguous: sold by plans {', '.join(matches)}",
                details={"matches": matches},
            )
        return plans[0]

    # ============================================================
    # Stripe events
    # ============================================================

    async def apply_subscription_upsert(
        self, event: SubscriptionEvent
    ) -> Subscription | None:
        """Create or update the record for a subscription event.

        Returns:
            The stored record, or None if the event was older than the
            stored state and was skipped

        Raises:
            MissingReferenceError: If metadata names no user or organization
            UnknownPlanError: If the price does not resolve to one plan
        """
        reference = event.reference
        if reference is None:
            raise MissingReferenceError(
                details={"subscription_id": event.subscription_id}
            )
        reference_id, reference_type = reference

        plan = await self.resolve_plan(event.price_id)

        subscription = await self.repo.upsert_subscription(
            {
                "id": event.subscription_id,
                "plan_id": plan.id,
                "reference_id": reference_id,
                "reference_type": reference_type.value,
                "stripe_customer_id": event.customer_id,
                "stripe_subscription_id": event.subscription_id,
                "status": event.status.value,
                "period_start": event.period_start,
                "period_end": event.period_end,
                "trial_start": event.trial_start,
                "trial_end": event.trial_end,
                "cancel_at_period_end": event.cancel_at_period_end,
                "seats": event.seats,
                "limits": dict(plan.limits or {}),
                "metadata": dict(plan.metadata_ or {}),
                "event_created_at": event.event_created_at,
            }
        )

        if subscription is None:
            logger.info(
                "subscription_event_skipped",
                subscription_id=event.subscription_id,
                status=event.status.value,
                reason="stale_or_canceled",
            )
            return None

        logger.info(
            "subscription_upserted",
            subscription_id=subscription.id,
            reference_id=reference_id,
            reference_type=reference_type.value,
            plan_id=plan.id,
            status=subscription.status,
        )
        return subscription

    async def apply_subscription_cancellation(self, subscription_id: str) -> bool:
        """Mark a record canceled.

        Returns:
            False if no record exists for the id
        """
        updated = await self.repo.set_status(subscription_id, SubscriptionStatus.CANCELED)
        if not updated:
            logger.warning("subscription_not_found", subscription_id=subscription_id)
            return False

        logger.info("subscription_canceled", subscription_id=subscription_id)
        return True

    async def apply_payment_outcome(
        self, subscription_id: str, outcome: PaymentOutcome
    ) -> bool:
        """Move a record to active or past_due after an invoice payment.

        Unknown and canceled records are left untouched.

        Returns:
            True if the record was updated
        """
        status = _OUTCOME_STATUS[outcome]
        updated = await self.repo.set_status(
            subscription_id, status, revive_canceled=False
        )

        logger.info(
            "payment_outcome_applied" if updated else "payment_outcome_ignored",
            subscription_id=subscription_id,
            outcome=outcome.value,
            status=status.value,
        )
        return updated

    # ============================================================
    # User actions
    # ============================================================

    async def cancel_at_period_end(
        self, subscription_id: str, acting_reference_id: str
    ) -> Subscription:
        """Schedule a subscription to end with its current period."""
        return await self._set_cancel_flag(subscription_id, acting_reference_id, True)

    async def resume_at_period_end(
        self, subscription_id: str, acting_reference_id: str
    ) -> Subscription:
        """Undo a scheduled cancellation."""
        return await self._set_cancel_flag(subscription_id, acting_reference_id, False)

    async def _set_cancel_flag(
        self, subscription_id: str, acting_reference_id: str, value: bool
    ) -> Subscription:
        """Update the cancel flag in Stripe, then locally.

        Raises:
            NotFoundError: If the record does not exist
            NotAuthorizedError: If the acting entity does not own the record
            BadRequestError: If the record is already canceled
            UpstreamUnavailableError: If Stripe cannot be reached
        """
        subscription = await self.repo.get_subscription(subscription_id)
        if not subscription:
            raise NotFoundError(
                "Subscription not found",
                resource="subscription",
                resource_id=subscription_id,
            )

        if subscription.reference_id != acting_reference_id:
            logger.warning(
                "subscription_action_denied",
                subscription_id=subscription_id,
                acting_reference_id=acting_reference_id,
            )
            raise NotAuthorizedError()

        if subscription.status == SubscriptionStatus.CANCELED:
            raise BadRequestError(
                "Subscription is already canceled",
                error_code="subscription_canceled",
            )

        # Stripe first: a failure here leaves the local record untouched
        await self.stripe.update_subscription(
            subscription.id, cancel_at_period_end=value
        )

        subscription = await self.repo.update_subscription(
            subscription, {"cancel_at_period_end": value}
        )
        logger.info(
            "subscription_cancel_flag_set",
            subscription_id=subscription.id,
            cancel_at_period_end=value,
        )
        return subscription

    # ============================================================
    # Admin
    # ============================================================

    async def apply_admin_update(
        self, subscription_id: str, changes: AdminSubscriptionUpdate
    ) -> Subscription:
        """Apply an operator's allow-listed fix to a record.

        Changing the plan refreshes the limits snapshot unless limits are
        given explicitly.

        Raises:
            NotFoundError: If the record does not exist
            BadRequestError: If ``plan_id`` names no plan
            ConflictError: If a canceled record would change status
        """
        subscription = await self.repo.get_subscription(subscription_id)
        if not subscription:
            raise NotFoundError(
                "Subscription not found",
                resource="subscription",
                resource_id=subscription_id,
            )

        data: dict[str, Any] = changes.model_dump(exclude_unset=True)

        new_status = data.get("status")
        if new_status is not None:
            if (
                subscription.status == SubscriptionStatus.CANCELED
                and new_status != SubscriptionStatus.CANCELED
            ):
                raise ConflictError(
                    "Canceled subscriptions cannot change status",
                    error_code="subscription_canceled",
                )
            data["status"] = SubscriptionStatus(new_status).value

        plan_id = data.get("plan_id")
        if plan_id is not None and plan_id != subscription.plan_id:
            plan = await self.repo.get_plan(plan_id)
            if not plan:
                raise BadRequestError(
                    f"Plan {plan_id!r} does not exist", error_code="unknown_plan"
                )
            if data.get("limits") is None:
                data["limits"] = dict(plan.limits or {})
            data["metadata_"] = dict(plan.metadata_ or {})

        # Explicit nulls only make sense for nullable columns
        for key in ("plan_id", "status", "cancel_at_period_end", "seats", "limits"):
            if key in data and data[key] is None:
                del data[key]

        subscription = await self.repo.update_subscription(subscription, data)
        logger.info(
            "subscription_admin_updated",
            subscription_id=subscription.id,
            fields=sorted(data),
        )
        return subscription
