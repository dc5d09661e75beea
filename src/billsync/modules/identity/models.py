"""Identity database models."""

from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billsync.core.constants import (
    MAX_EMAIL_LENGTH,
    MAX_NAME_LENGTH,
    MAX_SLUG_LENGTH,
    MAX_STRIPE_ID_LENGTH,
)
from billsync.core.database.base import Base, TimestampMixin


def _new_id() -> str:
    return uuid4().hex


class User(Base, TimestampMixin):
    """An authenticated user.

    Attributes:
        email: Address billing notifications go to
        name: Display name passed to Stripe when creating a customer
        stripe_customer_id: Cached Stripe customer (at most one per user)
        is_superuser: Whether the user may use admin billing operations
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(
        String(MAX_EMAIL_LENGTH),
        nullable=False,
        unique=True,
        index=True,
    )
    name: Mapped[str | None] = mapped_column(String(MAX_NAME_LENGTH))
    stripe_customer_id: Mapped[str | None] = mapped_column(
        String(MAX_STRIPE_ID_LENGTH),
        unique=True,
        nullable=True,
    )
    is_superuser: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class Organization(Base, TimestampMixin):
    """An organization (team) that can hold its own subscription."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False)
    slug: Mapped[str | None] = mapped_column(
        String(MAX_SLUG_LENGTH),
        unique=True,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"


class Member(Base, TimestampMixin):
    """Membership of a user in an organization."""

    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_members_org_user"),
    )

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(50), default="member", nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Member(organization_id={self.organization_id}, "
            f"user_id={self.user_id}, role={self.role})>"
        )
