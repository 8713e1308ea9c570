"""
Tests for machine purchases.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from fortune_city.core.exceptions import InsufficientFundsError, ValidationError
from fortune_city.models import MachineStatus, ReferralBonus
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.purchase_service import PurchaseService, split_purchase_payment
from fortune_city.services.settings_service import SettingsService


async def test_split_payment_order(make_user):
    user = await make_user(bonus_fortune=3, fortune_balance=5, referral_balance=10)

    payment = split_purchase_payment(user, Decimal(10))

    assert payment == {
        "from_bonus": Decimal(3),
        "from_fortune": Decimal(5),
        "from_referral": Decimal(2),
    }


async def test_first_purchase_is_upgrade(session, make_user):
    user = await make_user(fortune_balance=25, total_fresh_deposits=25)

    result = await PurchaseService(session).purchase_machine(user.id, 1)

    assert result["price"] == Decimal(10)
    assert result["is_upgrade"] is True
    assert result["fresh_amount"] == Decimal(10)
    assert result["profit_amount"] == 0
    assert result["fame_earned"] == 40
    assert result["machine"].reinvest_round == 1
    assert user.fortune_balance == Decimal(15)
    assert user.total_fresh_deposits == Decimal(15)
    assert user.max_tier_reached == 1
    assert user.current_tax_rate == Decimal("0.5")

    fund_source = await FundSourceService(session).get_by_machine_id(result["machine"].id)
    assert fund_source.source_type == "fresh"


async def test_bonus_balance_is_spent_first(session, make_user):
    user = await make_user(bonus_fortune=4, fortune_balance=20, total_fresh_deposits=20)

    result = await PurchaseService(session).purchase_machine(user.id, 1)

    assert result["paid_from_bonus"] == Decimal(4)
    assert result["paid_from_fortune"] == Decimal(6)
    assert user.bonus_fortune == 0
    assert user.fortune_balance == Decimal(14)


async def test_insufficient_funds(session, make_user):
    user = await make_user(fortune_balance=9)

    with pytest.raises(InsufficientFundsError) as exc_info:
        await PurchaseService(session).purchase_machine(user.id, 1)
    assert exc_info.value.status_code == 400


async def test_locked_tier(session, make_user):
    user = await make_user(fortune_balance=100)

    with pytest.raises(ValidationError, match="locked"):
        await PurchaseService(session).purchase_machine(user.id, 2)


async def test_global_tier_opens_purchase(session, make_user):
    await SettingsService(session).update_max_global_tier(2)
    user = await make_user(fortune_balance=100)

    result = await PurchaseService(session).purchase_machine(user.id, 2)

    assert result["machine"].tier == 2
    assert user.current_tax_rate == Decimal("0.45")


async def test_one_running_machine_per_tier(session, make_user):
    user = await make_user(fortune_balance=100)
    service = PurchaseService(session)
    await service.purchase_machine(user.id, 1)

    with pytest.raises(ValidationError, match="already have an active machine"):
        await service.purchase_machine(user.id, 1)


async def test_reinvest_round_after_completion(session, make_user):
    user = await make_user(fortune_balance=100)
    service = PurchaseService(session)

    first = await service.purchase_machine(user.id, 1)
    first["machine"].status = MachineStatus.EXPIRED.value
    await session.flush()

    second = await service.purchase_machine(user.id, 1)

    assert second["is_upgrade"] is False
    assert second["fame_earned"] == 20
    assert second["machine"].reinvest_round == 2
    assert second["machine"].profit_amount == Decimal("2.925")


async def test_referral_bonus_on_fresh_part(session, make_user):
    top = await make_user()
    middle = await make_user(referred_by_id=top.id)
    parent = await make_user(referred_by_id=middle.id)
    # Half of the balance is fresh money
    buyer = await make_user(
        referred_by_id=parent.id,
        fortune_balance=20,
        total_fresh_deposits=10,
        total_profit_collected=10,
    )

    result = await PurchaseService(session).purchase_machine(buyer.id, 1)

    assert result["fresh_amount"] == Decimal(5)
    assert result["profit_amount"] == Decimal(5)
    assert parent.referral_balance == Decimal("0.25")
    assert middle.referral_balance == Decimal("0.15")
    assert top.referral_balance == Decimal("0.05")
    assert result["referral_bonus_total"] == Decimal("0.45")

    bonuses = (await session.execute(select(ReferralBonus))).scalars().all()
    assert sorted(b.level for b in bonuses) == [1, 2, 3]


async def test_profit_only_purchase_pays_no_referral_bonus(session, make_user):
    parent = await make_user()
    buyer = await make_user(
        referred_by_id=parent.id,
        fortune_balance=20,
        total_profit_collected=20,
    )

    result = await PurchaseService(session).purchase_machine(buyer.id, 1)

    assert result["referral_bonus_total"] == 0
    assert parent.referral_balance == 0


async def test_can_afford_tier(session, make_user):
    user = await make_user(fortune_balance=12)
    service = PurchaseService(session)

    info = await service.can_afford_tier(user.id, 1)
    assert info["can_afford"] is True
    assert info["next_reinvest_round"] == 1

    locked = await service.can_afford_tier(user.id, 2)
    assert locked["can_afford"] is False
    assert locked["tier_locked"] is True
    assert locked["shortfall"] == Decimal(18)
    assert locked["auto_unlock_threshold"] == 250


async def test_purchase_history(session, make_user):
    user = await make_user(fortune_balance=100)
    service = PurchaseService(session)
    await service.purchase_machine(user.id, 1)

    history = await service.get_purchase_history(user.id)
    assert len(history) == 1
    assert history[0].amount == Decimal(10)
