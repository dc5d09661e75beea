"""Billing API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from billsync.core.auth import CurrentSuperuser, CurrentUser

from .models import PlanType
from .schemas import (
    AdminSubscriptionUpdate,
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    Entitlements,
    LimitCheck,
    OrganizationAllowance,
    PlanResponse,
    PortalSessionCreate,
    PortalSessionResponse,
    SubscriptionActionRequest,
    SubscriptionResponse,
)
from .services import BillingService
from .webhooks import webhook_router


router = APIRouter(prefix="/billing", tags=["billing"])

# Stripe authenticates webhooks by signature, not by bearer token
router.include_router(webhook_router)

OrganizationQuery = Annotated[
    str | None,
    Query(description="Act on behalf of this organization instead of yourself"),
]


# ============================================================
# Plans
# ============================================================


@router.get(
    "/plans",
    response_model=list[PlanResponse],
    summary="List plans",
    description="List active plans in catalog order.",
)
async def list_plans(
    service: Annotated[BillingService, Depends()],
    type: Annotated[PlanType | None, Query(description="Filter by plan type")] = None,
) -> list[PlanResponse]:
    """List active plans."""
    plans = await service.list_plans(type)
    return [PlanResponse.model_validate(plan) for plan in plans]


# ============================================================
# Checkout
# ============================================================


@router.post(
    "/checkout",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create checkout session",
    description="Create a Stripe Checkout session for a plan's price.",
)
async def create_checkout_session(
    data: CheckoutSessionCreate,
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
) -> CheckoutSessionResponse:
    """Create a Stripe Checkout session."""
    return await service.start_checkout(current_user, data)


# ============================================================
# Customer Portal
# ============================================================


@router.post(
    "/portal",
    response_model=PortalSessionResponse,
    summary="Create portal session",
    description="Create a Stripe Customer Portal session for self-service billing management.",
)
async def create_portal_session(
    data: PortalSessionCreate,
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
) -> PortalSessionResponse:
    """Create a Stripe Customer Portal session."""
    return await service.open_billing_portal(current_user, data)


# ============================================================
# Subscriptions
# ============================================================


@router.get(
    "/subscription",
    response_model=SubscriptionResponse | None,
    summary="Get current subscription",
    description="Get the current personal subscription of the caller.",
)
async def get_subscription(
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
) -> SubscriptionResponse | None:
    """Get the caller's current subscription."""
    subscription = await service.get_current_subscription(current_user)
    if subscription:
        return SubscriptionResponse.model_validate(subscription)
    return None


@router.get(
    "/organizations/{organization_id}/subscription",
    response_model=SubscriptionResponse | None,
    summary="Get organization subscription",
    description="Get the current subscription of an organization the caller belongs to.",
)
async def get_organization_subscription(
    organization_id: str,
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
) -> SubscriptionResponse | None:
    """Get an organization's current subscription."""
    subscription = await service.get_organization_subscription(
        current_user, organization_id
    )
    if subscription:
        return SubscriptionResponse.model_validate(subscription)
    return None


@router.post(
    "/subscriptions/{subscription_id}/cancel",
    response_model=SubscriptionResponse,
    summary="Cancel subscription",
    description="Cancel a subscription at the end of the current billing period.",
)
async def cancel_subscription(
    subscription_id: str,
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
    data: SubscriptionActionRequest | None = None,
) -> SubscriptionResponse:
    """Cancel a subscription at period end."""
    subscription = await service.cancel_subscription(
        current_user,
        subscription_id,
        organization_id=data.organization_id if data else None,
    )
    return SubscriptionResponse.model_validate(subscription)


@router.post(
    "/subscriptions/{subscription_id}/reactivate",
    response_model=SubscriptionResponse,
    summary="Reactivate subscription",
    description="Withdraw a scheduled cancellation.",
)
async def reactivate_subscription(
    subscription_id: str,
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
    data: SubscriptionActionRequest | None = None,
) -> SubscriptionResponse:
    """Resume a subscription scheduled to cancel."""
    subscription = await service.reactivate_subscription(
        current_user,
        subscription_id,
        organization_id=data.organization_id if data else None,
    )
    return SubscriptionResponse.model_validate(subscription)


# ============================================================
# Entitlements
# ============================================================


@router.get(
    "/entitlements",
    response_model=Entitlements,
    summary="Get entitlements",
    description="Get the usage limits in effect for the caller or an organization.",
)
async def get_entitlements(
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
    organization_id: OrganizationQuery = None,
) -> Entitlements:
    """Get effective limits."""
    return await service.get_entitlements(current_user, organization_id)


@router.get(
    "/entitlements/{limit_key}",
    response_model=LimitCheck,
    summary="Check limit",
    description="Check current usage against one effective limit.",
)
async def check_limit(
    limit_key: str,
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
    usage: Annotated[int, Query(ge=0, description="Current usage")] = 0,
    organization_id: OrganizationQuery = None,
) -> LimitCheck:
    """Check usage against a limit."""
    return await service.check_limit(
        current_user, limit_key, usage, organization_id=organization_id
    )


@router.get(
    "/organizations/can-create",
    response_model=OrganizationAllowance,
    summary="Check organization creation",
    description="Whether the caller may create another organization.",
)
async def can_create_organization(
    service: Annotated[BillingService, Depends()],
    current_user: CurrentUser,
) -> OrganizationAllowance:
    """Check whether the caller may create an organization."""
    return await service.can_create_organization(current_user)


# ============================================================
# Admin
# ============================================================


@router.patch(
    "/admin/subscriptions/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Update subscription (admin)",
    description="Apply an allow-listed correction to a billing record.",
)
async def admin_update_subscription(
    subscription_id: str,
    data: AdminSubscriptionUpdate,
    service: Annotated[BillingService, Depends()],
    _: CurrentSuperuser,
) -> SubscriptionResponse:
    """Correct a billing record."""
    subscription = await service.admin_update_subscription(subscription_id, data)
    return SubscriptionResponse.model_validate(subscription)
