"""Unit tests for plan catalog loading and seeding."""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from billsync.modules.billing.catalog import (
    DEFAULT_PLANS,
    PlanSeed,
    load_plan_seeds,
    seed_plans,
)


CATALOG_YAML = """
plans:
  - id: hobby
    name: Hobby
    stripe_price_id: price_hobby_monthly
    amount: 900
    limits:
      projects: 2
  - id: lifetime
    name: Lifetime
    type: one_time
    stripe_price_id: price_lifetime
    amount: 29900
    interval: null
    limits:
      projects: -1
"""


class TestLoadPlanSeeds:
    """Tests for load_plan_seeds."""

    def test_mapping_with_plans_key(self, tmp_path):
        """A ``plans:`` mapping should be accepted."""
        path = tmp_path / "plans.yaml"
        path.write_text(CATALOG_YAML)

        seeds = load_plan_seeds(path)

        assert [s.id for s in seeds] == ["hobby", "lifetime"]
        assert seeds[0].limits == {"projects": 2}
        assert seeds[1].type == "one_time"
        assert seeds[1].interval is None

    def test_top_level_list(self, tmp_path):
        """A bare list of plans should be accepted."""
        path = tmp_path / "plans.yaml"
        path.write_text("- id: solo\n  name: Solo\n  stripe_price_id: price_solo\n")

        seeds = load_plan_seeds(path)

        assert seeds[0].id == "solo"
        assert seeds[0].is_active is True

    def test_wrong_shape(self, tmp_path):
        """Scalars and mappings without plans are rejected."""
        path = tmp_path / "plans.yaml"
        path.write_text("name: not a catalog\n")

        with pytest.raises(ValueError, match="list of plans"):
            load_plan_seeds(path)

    def test_invalid_plan(self, tmp_path):
        """Plans missing a price id fail validation."""
        path = tmp_path / "plans.yaml"
        path.write_text("- id: broken\n  name: Broken\n")

        with pytest.raises(ValidationError):
            load_plan_seeds(path)


class TestPlanSeed:
    """Tests for PlanSeed rows."""

    def test_to_row_uses_plain_values(self):
        """Rows hold plain strings for enum columns."""
        row = PlanSeed(id="a", name="A", stripe_price_id="price_a").to_row()

        assert row["type"] == "subscription"
        assert row["metadata"] == {}

    def test_default_catalog(self):
        """The bundled catalog has unique ids and prices."""
        assert len({p.id for p in DEFAULT_PLANS}) == len(DEFAULT_PLANS)
        assert len({p.stripe_price_id for p in DEFAULT_PLANS}) == len(DEFAULT_PLANS)


class TestSeedPlans:
    """Tests for seed_plans."""

    @pytest.mark.asyncio
    async def test_reports_inserted_and_skipped(self):
        """Existing plans are reported as skipped."""
        mock_repo = AsyncMock()
        mock_repo.insert_plan_if_absent.side_effect = [True, False, True]

        result = await seed_plans(mock_repo, DEFAULT_PLANS)

        assert result == {"starter": True, "professional": False, "enterprise": True}
        assert mock_repo.insert_plan_if_absent.await_count == 3
