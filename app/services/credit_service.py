"""
Credit ledger.

Balances are changed with single conditional UPDATE statements, so the
check and the debit happen in one database operation and no other
coroutine can observe a half-applied state.
"""
from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import InsufficientCredits, NotFound
from app.logging_config import get_logger
from app.models.credit import CreditTransaction, TransactionType
from app.models.user import User, PlanTier, PLAN_CREDITS, UNLIMITED_CREDITS
from app.routes.metrics import track_credit_deduction, track_credit_refund


log = get_logger(component="credit_ledger")


class CreditService:
    """Service for managing user credits and transactions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(self, user_id: str) -> int:
        """
        Get credit balance for a user.

        Args:
            user_id: User UUID

        Returns:
            Credit balance

        Raises:
            NotFound: if the user does not exist
        """
        stmt = select(User.credits).where(User.id == user_id)
        result = await self.db.execute(stmt)
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFound("user", user_id)
        return balance

    async def use_credits(
        self,
        user_id: str,
        amount: int,
        job_id: str | None = None,
        description: str | None = None
    ) -> int:
        """
        Debit credits from a user's balance.

        Args:
            user_id: User UUID
            amount: Amount to debit
            job_id: Associated job ID (optional)
            description: Transaction description (optional)

        Returns:
            Balance after the debit

        Raises:
            InsufficientCredits: balance < amount; nothing is changed
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        stmt = (
            update(User)
            .where(
                User.id == user_id,
                User.credits >= amount,
                User.credits < UNLIMITED_CREDITS,
            )
            .values(credits=User.credits - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 0:
            # Either unlimited, short on credits, or unknown user
            balance = await self.get_balance(user_id)
            if balance < UNLIMITED_CREDITS:
                log.info("credits_insufficient", user_id=user_id, balance=balance, required=amount)
                raise InsufficientCredits(balance=balance, required=amount)

        self.db.add(CreditTransaction(
            user_id=user_id,
            amount=amount,
            type=TransactionType.DEDUCTION,
            job_id=job_id,
            description=description
        ))
        await self.db.commit()

        balance = await self.get_balance(user_id)
        track_credit_deduction(amount)
        log.info("credits_used", user_id=user_id, amount=amount, balance=balance, job_id=job_id)
        return balance

    async def add_credits(
        self,
        user_id: str,
        amount: int,
        job_id: str | None = None,
        description: str | None = None,
        transaction_type: TransactionType = TransactionType.REFUND
    ) -> int:
        """
        Add credits to a user's balance (refunds and top-ups).

        An unlimited balance is left as it is.

        Returns:
            Balance after the credit

        Raises:
            NotFound: if the user does not exist
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(credits=case(
                (User.credits >= UNLIMITED_CREDITS, User.credits),
                else_=User.credits + amount
            ))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise NotFound("user", user_id)

        self.db.add(CreditTransaction(
            user_id=user_id,
            amount=amount,
            type=transaction_type,
            job_id=job_id,
            description=description
        ))
        await self.db.commit()

        balance = await self.get_balance(user_id)
        if transaction_type == TransactionType.REFUND:
            track_credit_refund(amount)
        log.info("credits_added", user_id=user_id, amount=amount, balance=balance, job_id=job_id)
        return balance

    async def upgrade_plan(self, user_id: str, plan: PlanTier) -> User:
        """
        Move a user to a paid plan and reset the balance to its allowance.

        Raises:
            ValueError: for the free plan, which cannot be bought
            NotFound: if the user does not exist
        """
        if plan not in PLAN_CREDITS:
            raise ValueError(f"Cannot upgrade to plan: {plan.value}")

        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFound("user", user_id)

        user.plan = plan
        user.credits = PLAN_CREDITS[plan]
        self.db.add(CreditTransaction(
            user_id=user_id,
            amount=PLAN_CREDITS[plan],
            type=TransactionType.UPGRADE,
            description=f"Plan upgrade: {plan.value}"
        ))
        await self.db.commit()
        await self.db.refresh(user)

        log.info("plan_upgraded", user_id=user_id, plan=plan.value, balance=user.credits)
        return user

    async def get_transactions(self, user_id: str, limit: int = 10) -> list[CreditTransaction]:
        """
        Get credit transactions for a user.

        Args:
            user_id: User UUID
            limit: Maximum number of transactions to return

        Returns:
            List of credit transactions (most recent first)
        """
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
