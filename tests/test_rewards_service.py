from decimal import Decimal

import pytest

from app.models.rewards import PointsTransactionType
from app.services.rewards_service import RewardsService, InsufficientBalanceError


async def test_first_earn_creates_account(db, marketplace):
    user = await marketplace.user()
    rewards = RewardsService(db)

    await rewards.earn(user.id, None, Decimal("1.25"))
    await db.commit()

    summary = await rewards.get_points(user.id)
    assert summary.balance == Decimal("1.25")
    assert summary.total_earned == Decimal("1.25")
    assert summary.total_redeemed == Decimal("0.00")


async def test_earn_accumulates(db, marketplace):
    user = await marketplace.user()
    rewards = RewardsService(db)

    await rewards.earn(user.id, None, Decimal("1.00"))
    await rewards.earn(user.id, None, Decimal("2.50"))
    await db.commit()

    summary = await rewards.get_points(user.id)
    assert summary.balance == Decimal("3.50")
    assert summary.total_earned == Decimal("3.50")


async def test_redeem_within_balance(db, marketplace):
    user = await marketplace.user()
    rewards = RewardsService(db)
    await rewards.earn(user.id, None, Decimal("30.00"))

    await rewards.redeem(user.id, None, Decimal("12.00"))
    await db.commit()

    summary = await rewards.get_points(user.id)
    assert summary.balance == Decimal("18.00")
    assert summary.total_redeemed == Decimal("12.00")


async def test_redeem_more_than_balance_raises(db, marketplace):
    user = await marketplace.user()
    rewards = RewardsService(db)
    await rewards.earn(user.id, None, Decimal("30.00"))
    await db.commit()

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await rewards.redeem(user.id, None, Decimal("50.00"))

    assert exc_info.value.available == Decimal("30.00")
    assert exc_info.value.requested == Decimal("50.00")
    assert (await rewards.get_points(user.id)).balance == Decimal("30.00")


async def test_redeem_without_account_raises(db, marketplace):
    user = await marketplace.user()

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await RewardsService(db).redeem(user.id, None, Decimal("5.00"))

    assert exc_info.value.available == Decimal("0.00")


@pytest.mark.parametrize("amount", ["0", "-1.00"])
async def test_amounts_must_be_positive(db, marketplace, amount):
    user = await marketplace.user()
    rewards = RewardsService(db)

    with pytest.raises(ValueError):
        await rewards.earn(user.id, None, Decimal(amount))
    with pytest.raises(ValueError):
        await rewards.redeem(user.id, None, Decimal(amount))


async def test_ledger_matches_balance(db, marketplace):
    user = await marketplace.user()
    rewards = RewardsService(db)
    await rewards.earn(user.id, None, Decimal("10.00"))
    await rewards.earn(user.id, None, Decimal("5.00"))
    await rewards.redeem(user.id, None, Decimal("7.50"))
    await db.commit()

    audit = await rewards.audit_balance(user.id)

    assert audit.is_consistent
    assert audit.balance == Decimal("7.50")
    assert audit.ledger_balance == Decimal("7.50")

    transactions = await rewards.list_transactions(user.id)
    assert len(transactions) == 3
    assert {t.transaction_type for t in transactions} == {
        PointsTransactionType.EARNED.value,
        PointsTransactionType.REDEEMED.value,
    }


async def test_audit_for_user_without_points(db, marketplace):
    user = await marketplace.user()

    audit = await RewardsService(db).audit_balance(user.id)

    assert audit.is_consistent
    assert audit.balance == Decimal("0.00")
