"""Entitlement resolution.

Limits come from the snapshot stored on the current billing record, not
from the plan catalog, so plan edits never change what existing
subscribers get. Lookups never fail: if the record store is unavailable
the entity is treated as being on the free tier.
"""

import asyncio
from collections.abc import Mapping
from typing import Annotated

import structlog
from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError

from billsync.config import settings
from billsync.core.constants import FREE_TIER_ORGANIZATIONS, UNLIMITED

from .models import ENTITLED_STATUSES
from .repos import BillingRepository
from .schemas import Entitlements, LimitCheck, OrganizationAllowance


logger = structlog.get_logger()


def evaluate_limit(
    limits: Mapping[str, int], limit_key: str, current_usage: int
) -> LimitCheck:
    """Check usage against one entry of a limits map.

    A key absent from the map allows nothing. ``-1`` allows anything.
    """
    limit = limits.get(limit_key, 0)
    if limit == UNLIMITED:
        return LimitCheck(
            limit_key=limit_key,
            limit=limit,
            current_usage=current_usage,
            within_limit=True,
            remaining=None,
        )

    return LimitCheck(
        limit_key=limit_key,
        limit=limit,
        current_usage=current_usage,
        within_limit=current_usage <= limit,
        remaining=max(limit - current_usage, 0),
    )


def free_tier(reference_id: str) -> Entitlements:
    """Entitlements of an entity without a paying subscription."""
    return Entitlements(
        reference_id=reference_id,
        limits=dict(settings.free_tier_limits),
        source="free_tier",
    )


class EntitlementResolver:
    """Resolves the limits in effect for a user or organization."""

    def __init__(self, repo: Annotated[BillingRepository, Depends()]) -> None:
        self.repo = repo

    async def get_effective_limits(self, reference_id: str) -> Entitlements:
        """Limits of the newest active or trialing record, else the free tier.

        The record's snapshot is laid over the free-tier defaults so every
        default key is present.
        """
        try:
            subscription = await asyncio.wait_for(
                self.repo.get_current_subscription(reference_id, ENTITLED_STATUSES),
                timeout=settings.entitlement_lookup_timeout_seconds,
            )
        except (SQLAlchemyError, TimeoutError, OSError) as e:
            logger.warning(
                "entitlement_lookup_failed",
                reference_id=reference_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._discard_transaction()
            return free_tier(reference_id)

        if subscription is None or not subscription.is_entitled:
            return free_tier(reference_id)

        return Entitlements(
            reference_id=reference_id,
            limits={**settings.free_tier_limits, **(subscription.limits or {})},
            source="subscription",
            subscription_id=subscription.id,
        )

    async def _discard_transaction(self) -> None:
        # A cancelled or failed query can leave the request session unusable
        # for the commit that runs after the response is built.
        try:
            await self.repo.session.rollback()
        except SQLAlchemyError as e:
            logger.warning("entitlement_rollback_failed", error=str(e))

    async def check_limit(
        self, reference_id: str, limit_key: str, current_usage: int
    ) -> LimitCheck:
        """Check usage against the entity's effective limit for ``limit_key``."""
        entitlements = await self.get_effective_limits(reference_id)
        return evaluate_limit(entitlements.limits, limit_key, current_usage)

    async def can_create_organization(
        self, user_id: str, organization_ids: list[str]
    ) -> OrganizationAllowance:
        """Whether a user may create another organization.

        Any organization the user belongs to whose limits carry
        ``organizations: -1`` lifts the cap. Otherwise a user may belong
        to at most ``FREE_TIER_ORGANIZATIONS`` organizations.
        """
        for organization_id in organization_ids:
            entitlements = await self.get_effective_limits(organization_id)
            if entitlements.limits.get("organizations") == UNLIMITED:
                return OrganizationAllowance(
                    user_id=user_id,
                    allowed=True,
                    organization_count=len(organization_ids),
                    limit=None,
                    granted_by=organization_id,
                )

        return OrganizationAllowance(
            user_id=user_id,
            allowed=len(organization_ids) < FREE_TIER_ORGANIZATIONS,
            organization_count=len(organization_ids),
            limit=FREE_TIER_ORGANIZATIONS,
        )
