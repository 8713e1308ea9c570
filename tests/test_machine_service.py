"""
Tests for machine accrual, collection, early sale and expiry.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from fortune_city.core.exceptions import MachineOwnershipError, ValidationError
from fortune_city.models import MachineStatus, Notification, NotificationType, Transaction
from fortune_city.services.machine_service import (
    MachineService, calculate_income, machine_economics
)
from fortune_city.services.settings_service import SettingsService

from conftest import full_box_age


TIER1_CAPACITY = Decimal("14.5") / 6


def test_machine_economics_tier_one():
    economics = machine_economics(1, 1)
    assert economics["purchase_price"] == Decimal(10)
    assert economics["total_yield"] == Decimal("14.5")
    assert economics["profit_amount"] == Decimal("4.5")
    assert float(economics["coin_box_capacity"]) == pytest.approx(float(TIER1_CAPACITY))


def test_reinvest_round_reduces_profit():
    economics = machine_economics(1, 2)
    assert economics["profit_amount"] == Decimal("2.925")
    assert economics["profit_reduction_rate"] == Decimal("0.35")


def test_free_machine_economics():
    economics = machine_economics(2, 5, is_free=True)
    assert economics["purchase_price"] == 0
    assert economics["reinvest_round"] == 1
    assert economics["profit_reduction_rate"] == 0


async def test_create_machine_is_active(session, make_user):
    user = await make_user()
    machine = await MachineService(session).create(user.id, 1)

    assert machine.status == MachineStatus.ACTIVE.value
    assert machine.expires_at - machine.started_at == timedelta(days=3)


async def test_prelaunch_machine_is_frozen(session, make_user):
    await SettingsService(session).update_settings({"is_prelaunch": True})
    user = await make_user()

    machine = await MachineService(session).create(user.id, 1)
    assert machine.status == MachineStatus.FROZEN.value

    state = calculate_income(machine, datetime.utcnow() + timedelta(hours=20))
    assert state.coin_box_current == 0
    assert state.can_collect is False

    result = await SettingsService(session).end_prelaunch()
    assert result["activated_machines"] == 1
    assert machine.status == MachineStatus.ACTIVE.value


async def test_coin_box_fills_and_stops(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, age_hours=6)

    half = calculate_income(machine)
    assert half.is_full is False
    assert half.can_collect is False
    assert half.seconds_until_full > 0
    assert float(half.coin_box_current) == pytest.approx(float(TIER1_CAPACITY) / 2, rel=1e-3)

    full = calculate_income(machine, datetime.utcnow() + timedelta(hours=10))
    assert full.is_full is True
    assert full.coin_box_current == machine.coin_box_capacity
    assert full.can_collect is True


async def test_collect_rejects_partial_box(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, age_hours=1)

    with pytest.raises(ValidationError, match="CoinBox is not full yet"):
        await MachineService(session).collect_coins(machine.id, user.id)


async def test_collect_full_box(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, age_hours=full_box_age())

    result = await MachineService(session).collect_coins(machine.id, user.id)

    assert float(result["collected"]) == pytest.approx(float(TIER1_CAPACITY))
    assert result["overclock_applied"] is False
    assert float(user.fortune_balance) == pytest.approx(float(TIER1_CAPACITY))
    # The box is smaller than the profit, so everything counts as profit
    assert float(machine.profit_paid_out) == pytest.approx(float(TIER1_CAPACITY))
    assert machine.principal_paid_out == 0
    assert float(user.total_profit_collected) == pytest.approx(float(TIER1_CAPACITY))
    # 13h of tier-1 passive fame plus the manual collect bonus
    assert result["fame_earned"] == 39 + 10
    assert user.fame == 49

    transactions = (await session.execute(
        select(Transaction).where(Transaction.user_id == user.id)
    )).scalars().all()
    assert len(transactions) == 1


async def test_auto_collect_skips_manual_fame(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, age_hours=full_box_age())

    result = await MachineService(session).collect_coins(machine.id, user.id, is_auto_collect=True)
    assert result["fame_earned"] == 39


async def test_overclock_multiplies_collection(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, age_hours=full_box_age(), overclock_multiplier=Decimal("1.5"))

    result = await MachineService(session).collect_coins(machine.id, user.id)

    assert result["overclock_applied"] is True
    assert float(result["collected"]) == pytest.approx(float(TIER1_CAPACITY) * 1.5)
    assert machine.overclock_multiplier == 0


async def test_collect_requires_owner(session, make_user, make_machine):
    owner = await make_user()
    stranger = await make_user()
    machine = await make_machine(owner, age_hours=full_box_age())

    with pytest.raises(MachineOwnershipError):
        await MachineService(session).collect_coins(machine.id, stranger.id)


async def test_profit_is_paid_before_principal(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(
        user,
        age_hours=full_box_age(),
        profit_paid_out=Decimal("4"),
    )

    await MachineService(session).collect_coins(machine.id, user.id)

    assert float(machine.profit_paid_out) == pytest.approx(4.5)
    assert float(machine.principal_paid_out) == pytest.approx(float(TIER1_CAPACITY) - 0.5)


async def test_expired_machine_is_collectable_with_partial_box(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, age_hours=72, coin_box_current=Decimal("1"))
    machine.last_calculated_at = machine.expires_at
    await session.flush()

    state = calculate_income(machine)
    assert state.is_expired is True
    assert state.can_collect is True

    result = await MachineService(session).collect_coins(machine.id, user.id)
    assert float(result["collected"]) == pytest.approx(1)


async def test_sell_early_fresh_machine(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user)

    result = await MachineService(session).sell_machine_early(machine.id, user.id)

    assert result["commission_rate"] == Decimal("0.2")
    assert float(result["total_returned"]) == pytest.approx(8, rel=1e-3)
    assert machine.status == MachineStatus.SOLD_EARLY.value
    assert float(user.fortune_balance) == pytest.approx(8, rel=1e-3)

    with pytest.raises(ValidationError):
        await MachineService(session).sell_machine_early(machine.id, user.id)


async def test_sell_early_info(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user)

    info = await MachineService(session).get_sell_early_info(machine.id, user.id)
    assert info["can_sell"] is True
    assert info["profit_progress"] == 0


async def test_check_and_expire_machines(session, make_user, make_machine):
    user = await make_user()
    old = await make_machine(user, age_hours=80)
    fresh = await make_machine(user, tier=2)

    expired = await MachineService(session).check_and_expire_machines()

    assert [e["id"] for e in expired] == [old.id]
    assert old.status == MachineStatus.EXPIRED.value
    assert fresh.status == MachineStatus.ACTIVE.value

    notifications = (await session.execute(
        select(Notification).where(Notification.user_id == user.id)
    )).scalars().all()
    assert [n.type for n in notifications] == [NotificationType.MACHINE_EXPIRED.value]

    assert await MachineService(session).check_and_expire_machines() == []


async def test_notify_full_coin_boxes_once(session, make_user, make_machine):
    user = await make_user()
    await make_machine(user, age_hours=full_box_age())
    await make_machine(user, age_hours=1)

    service = MachineService(session)
    assert await service.notify_full_coin_boxes() == 1
    assert await service.notify_full_coin_boxes() == 0


async def test_get_user_machines_filters_status(session, make_user, make_machine):
    user = await make_user()
    await make_machine(user)
    sold = await make_machine(user, tier=2, status=MachineStatus.SOLD_EARLY.value)

    service = MachineService(session)
    assert len(await service.get_user_machines(user.id)) == 2
    expired_or_sold = await service.get_user_machines(user.id, MachineStatus.SOLD_EARLY)
    assert [m.id for m in expired_or_sold] == [sold.id]
