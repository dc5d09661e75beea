"""Plan catalog seeding.

Plans are inserted if absent and never updated, so re-running the seed
is safe and edits made in the database are kept.
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, Field

from .models import PlanType
from .repos import BillingRepository


logger = structlog.get_logger()


class PlanSeed(BaseModel):
    """A plan definition as written in a catalog file."""

    id: str
    name: str
    stripe_price_id: str
    stripe_annual_price_id: str | None = None
    type: PlanType = PlanType.SUBSCRIPTION
    amount: int = 0
    currency: str = "usd"
    interval: str | None = "month"
    trial_period_days: int | None = None
    limits: dict[str, int] = Field(default_factory=dict)
    features: list[str] = Field(default_factory=list)
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    sort_order: int = 0

    def to_row(self) -> dict[str, Any]:
        """Column values for the plans table."""
        return self.model_dump(mode="json")


# Replace the price ids with the ones from your Stripe dashboard
DEFAULT_PLANS: list[PlanSeed] = [
    PlanSeed(
        id="starter",
        name="Starter",
        stripe_price_id="price_starter_monthly",
        stripe_annual_price_id="price_starter_annual",
        amount=1900,
        trial_period_days=14,
        sort_order=1,
        limits={"projects": 5, "storage": 10, "members": 3, "apiCalls": 10000},
    ),
    PlanSeed(
        id="professional",
        name="Professional",
        stripe_price_id="price_professional_monthly",
        stripe_annual_price_id="price_professional_annual",
        amount=4900,
        trial_period_days=14,
        sort_order=2,
        limits={"projects": 25, "storage": 100, "members": 10, "apiCalls": 100000},
    ),
    PlanSeed(
        id="enterprise",
        name="Enterprise",
        stripe_price_id="price_enterprise_monthly",
        stripe_annual_price_id="price_enterprise_annual",
        amount=19900,
        trial_period_days=30,
        sort_order=3,
        limits={"projects": -1, "storage": -1, "members": -1, "apiCalls": -1},
    ),
]


def load_plan_seeds(path: Path) -> list[PlanSeed]:
    """Read plan definitions from a YAML file.

    The file holds either a list of plans or a mapping with a ``plans``
    key.

    Raises:
        ValueError: If the file is not in one of those shapes
        pydantic.ValidationError: If a plan definition is invalid
    """
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if isinstance(data, dict):
        data = data.get("plans")
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of plans")

    return [PlanSeed.model_validate(item) for item in data]


async def seed_plans(
    repo: BillingRepository, seeds: list[PlanSeed]
) -> dict[str, bool]:
    """Insert missing plans.

    Returns:
        Plan id -> whether it was inserted
    """
    results: dict[str, bool] = {}
    for seed in seeds:
        inserted = await repo.insert_plan_if_absent(seed.to_row())
        results[seed.id] = inserted
        logger.info(
            "plan_seeded" if inserted else "plan_seed_skipped",
            plan_id=seed.id,
            stripe_price_id=seed.stripe_price_id,
        )
    return results
