"""Identity repository for database operations."""

from sqlalchemy import select, update

from billsync.api.dependencies import DBSession
from billsync.modules.identity.models import Member, User


class IdentityRepository:
    """Read access to users and memberships, plus the customer link cache."""

    def __init__(self, session: DBSession) -> None:
        self.session = session

    async def get_user(self, user_id: str) -> User | None:
        """Get a user by ID."""
        return await self.session.get(User, user_id)

    async def is_member(self, organization_id: str, user_id: str) -> bool:
        """Check whether a user belongs to an organization."""
        result = await self.session.execute(
            select(Member.id)
            .where(Member.organization_id == organization_id)
            .where(Member.user_id == user_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_organization_ids(self, user_id: str) -> list[str]:
        """IDs of the organizations a user belongs to, oldest membership first."""
        result = await self.session.execute(
            select(Member.organization_id)
            .where(Member.user_id == user_id)
            .order_by(Member.created_at)
        )
        return list(result.scalars().all())

    async def list_member_emails(
        self, organization_id: str, roles: tuple[str, ...] = ("owner",)
    ) -> list[str]:
        """List email addresses of organization members with the given roles."""
        result = await self.session.execute(
            select(User.email)
            .join(Member, Member.user_id == User.id)
            .where(Member.organization_id == organization_id)
            .where(Member.role.in_(roles))
        )
        return list(result.scalars().all())

    async def link_stripe_customer(self, user: User, stripe_customer_id: str) -> str:
        """Cache a Stripe customer id on the user if none is linked yet.

        The write is conditional so two concurrent first checkouts cannot
        replace each other's link.

        Returns:
            The customer id now linked to the user (the existing one if
            another request won the race)
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user.id)
            .where(User.stripe_customer_id.is_(None))
            .values(stripe_customer_id=stripe_customer_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        await self.session.refresh(user)

        if result.rowcount == 0 and user.stripe_customer_id:
            return user.stripe_customer_id
        return stripe_customer_id
