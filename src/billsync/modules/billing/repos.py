"""Billing repository for database operations."""

from collections.abc import Sequence
from typing import Any

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite

from billsync.api.dependencies import DBSession

from .models import Plan, Subscription, SubscriptionStatus


# Columns overwritten when a newer subscription event arrives
_OVERWRITTEN_COLUMNS = (
    "plan_id",
    "status",
    "period_start",
    "period_end",
    "trial_start",
    "trial_end",
    "cancel_at_period_end",
    "seats",
)

# Snapshot columns refreshed only when the plan changes
_SNAPSHOT_COLUMNS = ("limits", "metadata")


class BillingRepository:
    """Repository for plan and billing record data access."""

    def __init__(self, session: DBSession) -> None:
        self.session = session

    def _insert(self, table: Any) -> Any:
        """Dialect-specific INSERT supporting ON CONFLICT."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert(table)
        return postgresql.insert(table)

    # ============================================================
    # Plans
    # ============================================================

    async def get_plan(self, plan_id: str) -> Plan | None:
        """Get a plan by ID."""
        return await self.session.get(Plan, plan_id)

    async def find_active_plans_by_price(self, price_id: str) -> list[Plan]:
        """Active plans whose monthly or annual price is ``price_id``."""
        result = await self.session.execute(
            select(Plan)
            .where(Plan.is_active.is_(True))
            .where(
                or_(
                    Plan.stripe_price_id == price_id,
                    Plan.stripe_annual_price_id == price_id,
                )
            )
        )
        return list(result.scalars().all())

    async def list_plans(
        self, plan_type: str | None = None, include_inactive: bool = False
    ) -> list[Plan]:
        """List plans in catalog order."""
        query = select(Plan).order_by(Plan.sort_order, Plan.name)
        if not include_inactive:
            query = query.where(Plan.is_active.is_(True))
        if plan_type:
            query = query.where(Plan.type == plan_type)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def insert_plan_if_absent(self, values: dict[str, Any]) -> bool:
        """Insert a plan unless one with the same id or name exists.

        Returns:
            True if the plan was inserted
        """
        existing = await self.session.execute(
            select(Plan.id).where(
                or_(Plan.id == values["id"], Plan.name == values["name"])
            )
        )
        if existing.first() is not None:
            return False

        stmt = (
            self._insert(Plan.__table__)
            .values(**values)
            .on_conflict_do_nothing()
            .returning(Plan.__table__.c.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    # ============================================================
    # Billing records
    # ============================================================

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        """Get a billing record by its Stripe subscription ID."""
        return await self.session.get(Subscription, subscription_id)

    async def get_current_subscription(
        self,
        reference_id: str,
        statuses: Sequence[str] | None = None,
    ) -> Subscription | None:
        """Get the current record for a billable entity.

        The current record is the most recent by ``period_start``. With
        ``statuses`` the choice is restricted to records in those statuses.
        """
        query = select(Subscription).where(Subscription.reference_id == reference_id)
        if statuses is not None:
            query = query.where(Subscription.status.in_([str(s) for s in statuses]))

        result = await self.session.execute(
            query.order_by(
                Subscription.period_start.desc().nulls_last(),
                Subscription.created_at.desc(),
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert_subscription(self, values: dict[str, Any]) -> Subscription | None:
        """Insert or conditionally overwrite a billing record.

        ``values`` is keyed by column name. The existing row is only
        overwritten when it is not canceled and the incoming event is not
        older than the stored one, both by period start and by event
        timestamp. Identity columns (id, customer, reference) are never
        overwritten. Limits and metadata snapshots are refreshed only when
        the plan changes.

        Returns:
            The stored record, or None if the event was stale and skipped
        """
        table = Subscription.__table__
        stmt = self._insert(table).values(**values)
        excluded = stmt.excluded

        set_: dict[str, Any] = {name: excluded[name] for name in _OVERWRITTEN_COLUMNS}
        for name in _SNAPSHOT_COLUMNS:
            set_[name] = case(
                (table.c.plan_id != excluded["plan_id"], excluded[name]),
                else_=table.c[name],
            )
        set_["event_created_at"] = func.coalesce(
            excluded["event_created_at"], table.c.event_created_at
        )
        set_["updated_at"] = func.now()

        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_=set_,
            where=and_(
                table.c.status != SubscriptionStatus.CANCELED.value,
                or_(
                    table.c.period_start.is_(None),
                    excluded["period_start"].is_(None),
                    table.c.period_start <= excluded["period_start"],
                ),
                or_(
                    table.c.event_created_at.is_(None),
                    excluded["event_created_at"].is_(None),
                    table.c.event_created_at <= excluded["event_created_at"],
                ),
            ),
        ).returning(table.c.id)

        result = await self.session.execute(stmt)
        subscription_id = result.scalar_one_or_none()
        if subscription_id is None:
            return None

        return await self.session.get(
            Subscription, subscription_id, populate_existing=True
        )

    async def set_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        revive_canceled: bool = True,
    ) -> bool:
        """Set a record's status in one statement.

        With ``revive_canceled=False`` a canceled record is left alone.

        Returns:
            True if a row was updated
        """
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(status=status.value)
        )
        if not revive_canceled:
            stmt = stmt.where(Subscription.status != SubscriptionStatus.CANCELED.value)

        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def update_subscription(
        self, subscription: Subscription, data: dict[str, Any]
    ) -> Subscription:
        """Update a billing record's mapped attributes."""
        for key, value in data.items():
            if hasattr(subscription, key):
                setattr(subscription, key, value)
        await self.session.flush()
        await self.session.refresh(subscription)
        return subscription
