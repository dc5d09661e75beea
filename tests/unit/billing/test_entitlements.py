"""Unit tests for entitlement resolution."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from billsync.config import settings
from billsync.modules.billing.entitlements import EntitlementResolver, evaluate_limit
from billsync.modules.billing.models import ENTITLED_STATUSES
from tests.factories.billing import make_plan, make_subscription


FREE_TIER = {"projects": 1, "storage": 1, "members": 1, "apiCalls": 1000}


class TestEvaluateLimit:
    """Tests for the pure limit check."""

    def test_within_limit(self):
        """Usage below the limit is allowed."""
        result = evaluate_limit({"projects": 5}, "projects", 3)

        assert result.within_limit is True
        assert result.limit == 5
        assert result.remaining == 2

    def test_usage_equal_to_limit_is_within(self):
        """Reaching the limit exactly is still within it."""
        result = evaluate_limit({"projects": 5}, "projects", 5)

        assert result.within_limit is True
        assert result.remaining == 0

    def test_over_limit(self):
        """Usage above the limit is rejected."""
        result = evaluate_limit({"projects": 5}, "projects", 6)

        assert result.within_limit is False
        assert result.remaining == 0

    def test_unlimited(self):
        """-1 allows any usage and has no remaining count."""
        result = evaluate_limit({"apiCalls": -1}, "apiCalls", 10_000_000)

        assert result.within_limit is True
        assert result.limit == -1
        assert result.remaining is None

    def test_missing_key_allows_nothing(self):
        """A key absent from the map resolves to a limit of zero."""
        result = evaluate_limit({"projects": 5}, "seats", 1)

        assert result.limit == 0
        assert result.within_limit is False

    def test_missing_key_with_zero_usage(self):
        """Zero usage of an absent key is within its zero limit."""
        assert evaluate_limit({}, "seats", 0).within_limit is True


class TestGetEffectiveLimits:
    """Tests for EntitlementResolver.get_effective_limits."""

    @pytest.mark.asyncio
    async def test_no_subscription_uses_free_tier(self):
        """Entities without a paying record get the free tier."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = None

        result = await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        assert result.source == "free_tier"
        assert result.limits == FREE_TIER
        assert result.subscription_id is None
        mock_repo.get_current_subscription.assert_awaited_once_with(
            "user_1", ENTITLED_STATUSES
        )

    @pytest.mark.asyncio
    async def test_subscription_snapshot_over_free_tier(self):
        """The record's snapshot should override the free-tier defaults."""
        plan = make_plan(limits={"projects": 25, "exports": 3})
        subscription = make_subscription(plan, "user_1", id="sub_1")
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = subscription

        result = await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        assert result.source == "subscription"
        assert result.subscription_id == "sub_1"
        assert result.limits["projects"] == 25
        assert result.limits["exports"] == 3
        # Free-tier keys the plan does not mention stay present
        assert result.limits["apiCalls"] == 1000

    @pytest.mark.asyncio
    async def test_store_error_falls_back_to_free_tier(self):
        """Database errors should never reach the caller."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.side_effect = OperationalError(
            "SELECT", {}, Exception("database is down")
        )

        result = await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        assert result.source == "free_tier"
        assert result.limits == FREE_TIER
        mock_repo.session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_slow_store_falls_back_to_free_tier(self, monkeypatch):
        """A lookup slower than the deadline should fall back."""
        monkeypatch.setattr(settings, "entitlement_lookup_timeout_seconds", 0.01)

        async def slow_lookup(*args, **kwargs):
            await asyncio.sleep(1)

        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.side_effect = slow_lookup

        result = await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        assert result.source == "free_tier"
        mock_repo.session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_rollback_still_falls_back(self):
        """A connection too broken to roll back still yields the free tier."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.side_effect = OperationalError(
            "SELECT", {}, Exception("connection lost")
        )
        mock_repo.session.rollback.side_effect = OperationalError(
            "ROLLBACK", {}, Exception("connection lost")
        )

        result = await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        assert result.source == "free_tier"

    @pytest.mark.asyncio
    async def test_successful_lookup_keeps_transaction(self):
        """Rollback only happens when the lookup fails."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = None

        await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        mock_repo.session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_entitled_record_uses_free_tier(self):
        """A past_due record handed back by the store grants nothing."""
        plan = make_plan(limits={"projects": 25})
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = make_subscription(
            plan, "user_1", status="past_due"
        )

        result = await EntitlementResolver(repo=mock_repo).get_effective_limits("user_1")

        assert result.source == "free_tier"

    @pytest.mark.asyncio
    async def test_free_tier_is_a_copy(self):
        """Callers mutating the result must not change the defaults."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = None
        resolver = EntitlementResolver(repo=mock_repo)

        result = await resolver.get_effective_limits("user_1")
        result.limits["projects"] = 999

        assert settings.free_tier_limits["projects"] == 1


class TestCheckLimit:
    """Tests for EntitlementResolver.check_limit."""

    @pytest.mark.asyncio
    async def test_enterprise_unlimited(self):
        """An unlimited plan accepts any usage."""
        plan = make_plan(limits={"projects": -1})
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = make_subscription(
            plan, "org_1"
        )

        result = await EntitlementResolver(repo=mock_repo).check_limit(
            "org_1", "projects", 10_000
        )

        assert result.within_limit is True
        assert result.remaining is None

    @pytest.mark.asyncio
    async def test_free_tier_limit(self):
        """Free-tier entities are held to the default limits."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = None

        result = await EntitlementResolver(repo=mock_repo).check_limit(
            "user_1", "projects", 2
        )

        assert result.limit == 1
        assert result.within_limit is False


class TestCanCreateOrganization:
    """Tests for EntitlementResolver.can_create_organization."""

    @pytest.mark.asyncio
    async def test_first_organization_allowed(self):
        """A user outside any organization may create one."""
        mock_repo = AsyncMock()

        result = await EntitlementResolver(repo=mock_repo).can_create_organization(
            "user_1", []
        )

        assert result.allowed is True
        assert result.organization_count == 0
        assert result.limit == 1
        mock_repo.get_current_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_free_tier_capped_at_one(self):
        """Members of a free-tier organization may not create another."""
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = None

        result = await EntitlementResolver(repo=mock_repo).can_create_organization(
            "user_1", ["org_1"]
        )

        assert result.allowed is False
        assert result.organization_count == 1
        assert result.granted_by is None

    @pytest.mark.asyncio
    async def test_unlimited_organization_lifts_cap(self):
        """Any organization with unlimited organizations allows more."""
        enterprise = make_plan(id="enterprise", limits={"organizations": -1})

        async def lookup(reference_id, statuses):
            if reference_id == "org_2":
                return make_subscription(enterprise, "org_2")
            return None

        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.side_effect = lookup

        result = await EntitlementResolver(repo=mock_repo).can_create_organization(
            "user_1", ["org_1", "org_2"]
        )

        assert result.allowed is True
        assert result.limit is None
        assert result.granted_by == "org_2"

    @pytest.mark.asyncio
    async def test_finite_organization_limit_does_not_lift_cap(self):
        """Only the unlimited sentinel lifts the cap."""
        plan = make_plan(limits={"organizations": 5})
        mock_repo = AsyncMock()
        mock_repo.get_current_subscription.return_value = make_subscription(
            plan, "org_1"
        )

        result = await EntitlementResolver(repo=mock_repo).can_create_organization(
            "user_1", ["org_1"]
        )

        assert result.allowed is False
