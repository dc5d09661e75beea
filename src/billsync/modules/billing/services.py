"""Billing service for user-initiated billing actions."""

from typing import Annotated

import structlog
from fastapi import Depends

from billsync.config import settings
from billsync.modules.identity.models import User
from billsync.modules.identity.repos import IdentityRepository

from .entitlements import EntitlementResolver
from .exceptions import NotAuthorizedError
from .models import Plan, PlanType, Subscription
from .reconciler import SubscriptionReconciler
from .repos import BillingRepository
from .schemas import (
    AdminSubscriptionUpdate,
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    Entitlements,
    LimitCheck,
    OrganizationAllowance,
    PortalSessionCreate,
    PortalSessionResponse,
)
from .stripe_client import StripeClient, get_stripe_client


logger = structlog.get_logger()


class BillingService:
    """Checkout, portal and subscription actions on behalf of a user.

    None of these write billing records directly: checkout only creates a
    Stripe session and the record appears when Stripe's subscription
    webhook arrives.
    """

    def __init__(
        self,
        repo: Annotated[BillingRepository, Depends()],
        identity: Annotated[IdentityRepository, Depends()],
        reconciler: Annotated[SubscriptionReconciler, Depends()],
        resolver: Annotated[EntitlementResolver, Depends()],
        stripe: Annotated[StripeClient, Depends(get_stripe_client)],
    ) -> None:
        self.repo = repo
        self.identity = identity
        self.reconciler = reconciler
        self.resolver = resolver
        self.stripe = stripe

    async def acting_reference(self, user: User, organization_id: str | None) -> str:
        """The billable entity a user acts as.

        Raises:
            NotAuthorizedError: If the user is not a member of the organization
        """
        if not organization_id:
            return user.id

        if not await self.identity.is_member(organization_id, user.id):
            logger.warning(
                "organization_access_denied",
                organization_id=organization_id,
                user_id=user.id,
            )
            raise NotAuthorizedError("Not a member of this organization")
        return organization_id

    # ============================================================
    # Customer Management
    # ============================================================

    async def ensure_customer(self, user: User) -> str:
        """Return the user's Stripe customer id, creating the customer once.

        Lookup order is the cached link, then a Stripe search by the
        ``userId`` metadata, then creation. Creation uses an idempotency
        key derived from the user id so concurrent first checkouts share
        one customer.
        """
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer_id = await self.stripe.find_customer_by_user(user.id)
        if customer_id is None:
            customer = await self.stripe.create_customer(
                email=user.email,
                name=user.name,
                metadata={"userId": user.id},
                idempotency_key=f"customer-{user.id}",
            )
            customer_id = customer.id
            logger.info(
                "stripe_customer_created", user_id=user.id, customer_id=customer_id
            )

        return await self.identity.link_stripe_customer(user, customer_id)

    # ============================================================
    # Checkout
    # ============================================================

    async def start_checkout(
        self, user: User, data: CheckoutSessionCreate
    ) -> CheckoutSessionResponse:
        """Create a Stripe Checkout session for a plan.

        The plan is validated before Stripe is contacted. ``userId`` and
        ``organizationId`` are attached as metadata so the resulting
        subscription events can be attributed.
        """
        await self.acting_reference(user, data.organization_id)
        plan = await self.reconciler.resolve_plan(data.price_id)

        customer_id = await self.ensure_customer(user)

        session = await self.stripe.create_checkout_session(
            customer_id=customer_id,
            price_id=data.price_id,
            success_url=data.success_url
            or f"{settings.app_url}/billing?checkout=success",
            cancel_url=data.cancel_url
            or f"{settings.app_url}/billing?checkout=canceled",
            mode="payment" if plan.type == PlanType.ONE_TIME else "subscription",
            quantity=data.quantity,
            metadata={
                "userId": user.id,
                "organizationId": data.organization_id or "",
            },
            trial_period_days=plan.trial_period_days,
        )

        logger.info(
            "checkout_session_created",
            user_id=user.id,
            organization_id=data.organization_id,
            plan_id=plan.id,
            session_id=session.id,
        )
        return CheckoutSessionResponse(session_id=session.id, url=session.url or "")

    # ============================================================
    # Customer Portal
    # ============================================================

    async def open_billing_portal(
        self, user: User, data: PortalSessionCreate
    ) -> PortalSessionResponse:
        """Create a Stripe Customer Portal session."""
        customer_id = await self.ensure_customer(user)
        session = await self.stripe.create_portal_session(
            customer_id=customer_id,
            return_url=data.return_url or f"{settings.app_url}/billing",
        )
        return PortalSessionResponse(url=session.url)

    # ============================================================
    # Subscriptions
    # ============================================================

    async def get_current_subscription(self, user: User) -> Subscription | None:
        """Current personal subscription of the user."""
        return await self.repo.get_current_subscription(user.id)

    async def get_organization_subscription(
        self, user: User, organization_id: str
    ) -> Subscription | None:
        """Current subscription of an organization the user belongs to."""
        reference_id = await self.acting_reference(user, organization_id)
        return await self.repo.get_current_subscription(reference_id)

    async def cancel_subscription(
        self, user: User, subscription_id: str, organization_id: str | None = None
    ) -> Subscription:
        """Cancel a subscription at the end of its period."""
        reference_id = await self.acting_reference(user, organization_id)
        return await self.reconciler.cancel_at_period_end(subscription_id, reference_id)

    async def reactivate_subscription(
        self, user: User, subscription_id: str, organization_id: str | None = None
    ) -> Subscription:
        """Withdraw a scheduled cancellation."""
        reference_id = await self.acting_reference(user, organization_id)
        return await self.reconciler.resume_at_period_end(subscription_id, reference_id)

    async def admin_update_subscription(
        self, subscription_id: str, changes: AdminSubscriptionUpdate
    ) -> Subscription:
        """Operator fix to a billing record."""
        return await self.reconciler.apply_admin_update(subscription_id, changes)

    # ============================================================
    # Plans and entitlements
    # ============================================================

    async def list_plans(self, plan_type: PlanType | None = None) -> list[Plan]:
        """Active plans in catalog order."""
        return await self.repo.list_plans(plan_type.value if plan_type else None)

    async def get_entitlements(
        self, user: User, organization_id: str | None = None
    ) -> Entitlements:
        """Effective limits of the user or one of their organizations."""
        reference_id = await self.acting_reference(user, organization_id)
        return await self.resolver.get_effective_limits(reference_id)

    async def check_limit(
        self,
        user: User,
        limit_key: str,
        current_usage: int,
        organization_id: str | None = None,
    ) -> LimitCheck:
        """Check usage against one of the effective limits."""
        reference_id = await self.acting_reference(user, organization_id)
        return await self.resolver.check_limit(reference_id, limit_key, current_usage)

    async def can_create_organization(self, user: User) -> OrganizationAllowance:
        """Whether the user's memberships allow creating another organization."""
        organization_ids = await self.identity.list_organization_ids(user.id)
        return await self.resolver.can_create_organization(user.id, organization_ids)
