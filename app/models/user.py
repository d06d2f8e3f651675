"""
User model.

The user record owns the credit balance and the plan tier.
"""
import uuid
import enum
from sqlalchemy import String, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin


# Balance at or above this value is treated as unlimited
UNLIMITED_CREDITS = 999999


class PlanTier(str, enum.Enum):
    """Subscription plan enum."""
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Balance granted when a user moves to a plan
PLAN_CREDITS = {
    PlanTier.BASIC: 20,
    PlanTier.PRO: 100,
    PlanTier.ENTERPRISE: UNLIMITED_CREDITS,
}


class User(Base, TimestampMixin):
    """
    User model.

    `credits` is only ever mutated through CreditService, with conditional
    UPDATE statements so the balance can never go negative.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan: Mapped[PlanTier] = mapped_column(
        SQLEnum(PlanTier, native_enum=False, create_type=False),
        nullable=False,
        default=PlanTier.FREE
    )
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    projects = relationship(
        "Project",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    @property
    def has_unlimited_credits(self) -> bool:
        return self.credits >= UNLIMITED_CREDITS

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, plan={self.plan}, credits={self.credits})>"
