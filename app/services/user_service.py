"""
User accounts.

Sign-in is handled upstream; this service only looks users up and
provisions them with the free-plan starting balance.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.logging_config import get_logger
from app.models.user import User, PlanTier


log = get_logger(component="users")


class UserService:
    """Service for managing users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: str) -> User | None:
        """
        Get user by ID.

        Args:
            user_id: User UUID

        Returns:
            User or None if not found
        """
        return await self.db.get(User, user_id, populate_existing=True)

    async def get_by_username(self, username: str) -> User | None:
        """
        Get user by username.

        Args:
            username: Login name

        Returns:
            User or None if not found
        """
        stmt = select(User).where(User.username == username)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        username: str,
        email: str | None = None,
        full_name: str | None = None,
        company: str | None = None
    ) -> User:
        """
        Create a new user on the free plan.

        Args:
            username: Login name
            email: Contact address (defaults to <username>@realtor360.local)
            full_name: Display name
            company: Agency name

        Returns:
            Newly created User
        """
        user = User(
            username=username,
            email=email or f"{username}@realtor360.local",
            full_name=full_name,
            company=company,
            plan=PlanTier.FREE,
            credits=settings.INITIAL_CREDITS
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        log.info("user_created", user_id=user.id, username=username, credits=user.credits)
        return user
