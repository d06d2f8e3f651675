import pytest

from app.exceptions import InsufficientCredits, NotFound
from app.models.credit import TransactionType
from app.models.user import PlanTier, UNLIMITED_CREDITS
from app.services.credit_service import CreditService


async def test_new_user_starts_with_free_credits(db, user):
    assert user.plan == PlanTier.FREE
    assert await CreditService(db).get_balance(user.id) == 5


async def test_use_credits_debits_and_records_transaction(db, user):
    credits = CreditService(db)

    balance = await credits.use_credits(user.id, 1, job_id="job-1", description="Transformation")

    assert balance == 4
    transactions = await credits.get_transactions(user.id)
    assert len(transactions) == 1
    assert transactions[0].type == TransactionType.DEDUCTION
    assert transactions[0].job_id == "job-1"


async def test_insufficient_credits_changes_nothing(db, make_user):
    broke = await make_user("broke", credits=0)
    credits = CreditService(db)

    with pytest.raises(InsufficientCredits) as exc_info:
        await credits.use_credits(broke.id, 1)

    assert exc_info.value.balance == 0
    assert exc_info.value.required == 1
    assert "Balance: 0, Required: 1" in str(exc_info.value)
    assert await credits.get_balance(broke.id) == 0
    assert await credits.get_transactions(broke.id) == []


async def test_balance_never_goes_negative(db, user):
    credits = CreditService(db)
    for _ in range(5):
        await credits.use_credits(user.id, 1)

    with pytest.raises(InsufficientCredits):
        await credits.use_credits(user.id, 1)
    assert await credits.get_balance(user.id) == 0


async def test_add_credits_refunds(db, user):
    credits = CreditService(db)
    await credits.use_credits(user.id, 1)

    balance = await credits.add_credits(user.id, 1, job_id="job-1", description="Refund")

    assert balance == 5
    latest = (await credits.get_transactions(user.id))[0]
    assert latest.type == TransactionType.REFUND


async def test_amount_must_be_positive(db, user):
    credits = CreditService(db)
    with pytest.raises(ValueError):
        await credits.use_credits(user.id, 0)
    with pytest.raises(ValueError):
        await credits.add_credits(user.id, -1)


async def test_unknown_user(db):
    with pytest.raises(NotFound):
        await CreditService(db).get_balance("missing")
    with pytest.raises(NotFound):
        await CreditService(db).add_credits("missing", 1)


@pytest.mark.parametrize("plan, allowance", [
    (PlanTier.BASIC, 20),
    (PlanTier.PRO, 100),
    (PlanTier.ENTERPRISE, UNLIMITED_CREDITS),
])
async def test_upgrade_resets_balance_to_plan_allowance(db, user, plan, allowance):
    upgraded = await CreditService(db).upgrade_plan(user.id, plan)

    assert upgraded.plan == plan
    assert upgraded.credits == allowance


async def test_cannot_upgrade_to_free(db, user):
    with pytest.raises(ValueError):
        await CreditService(db).upgrade_plan(user.id, PlanTier.FREE)


async def test_unlimited_balance_is_never_debited_or_incremented(db, user):
    credits = CreditService(db)
    await credits.upgrade_plan(user.id, PlanTier.ENTERPRISE)

    assert await credits.use_credits(user.id, 1) == UNLIMITED_CREDITS
    assert await credits.add_credits(user.id, 1) == UNLIMITED_CREDITS
    assert await credits.get_balance(user.id) == UNLIMITED_CREDITS
