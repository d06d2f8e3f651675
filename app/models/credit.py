"""
Credit models.

The balance itself lives on the user record; this module keeps the audit
trail of every debit, refund and plan change.
"""
import uuid
from sqlalchemy import String, ForeignKey, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
import enum
from app.models.base import Base, TimestampMixin


class TransactionType(str, enum.Enum):
    """Credit transaction type enum."""
    DEDUCTION = "deduction"
    REFUND = "refund"
    UPGRADE = "upgrade"


class CreditTransaction(Base, TimestampMixin):
    """
    Credit transaction history model.

    Records all credit deductions, refunds and upgrades for audit purposes.
    job_id is a plain reference: jobs may be evicted from history while
    their transactions remain.
    """
    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, native_enum=False),
        nullable=False
    )
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, user_id={self.user_id}, amount={self.amount}, type={self.type})>"
