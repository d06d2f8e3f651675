"""
Credit API routes.

Provides endpoints for the credit balance, transactions and plan upgrades.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_user_from_token
from app.models.user import User, PlanTier
from app.routes.jobs import isoformat_utc
from app.services.credit_service import CreditService


router = APIRouter(prefix="/api/credits", tags=["credits"])


class UpgradePlanRequest(BaseModel):
    """Request model for a plan upgrade."""
    plan: PlanTier


@router.get("", response_model=dict)
async def get_credits(
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    """Get credit balance, plan and recent transactions for the user."""
    credit_service = CreditService(db)
    transactions = await credit_service.get_transactions(current_user.id, limit=50)

    return {
        "balance": current_user.credits,
        "plan": current_user.plan.value,
        "unlimited": current_user.has_unlimited_credits,
        "transactions": [
            {
                "id": t.id,
                "amount": t.amount,
                "type": t.type.value,
                "job_id": t.job_id,
                "description": t.description,
                "created_at": isoformat_utc(t.created_at)
            }
            for t in transactions
        ]
    }


@router.post("/upgrade", response_model=dict)
async def upgrade_plan(
    request: UpgradePlanRequest,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    """
    Move the user to a paid plan.

    The balance is reset to the plan's allowance (enterprise is unlimited).
    """
    try:
        user = await CreditService(db).upgrade_plan(current_user.id, request.plan)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return {
        "plan": user.plan.value,
        "balance": user.credits,
        "unlimited": user.has_unlimited_credits,
        "message": f"Plan upgraded to {user.plan.value}"
    }
