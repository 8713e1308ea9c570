"""
Tests for machine add-ons: Fortune's Gamble, overclock, speed-up,
pawnshop and the hired collector.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from fortune_city.core.exceptions import (
    InsufficientFameError, InsufficientFundsError, ValidationError
)
from fortune_city.models import MachineStatus
from fortune_city.services import risky_collect_service
from fortune_city.services.auto_collect_service import AutoCollectService
from fortune_city.services.fund_source_service import FundSourceService, SourceBreakdown
from fortune_city.services.machine_service import MachineService
from fortune_city.services.overclock_service import OverclockService
from fortune_city.services.pawnshop_service import PawnshopService
from fortune_city.services.payments import PaymentMethod
from fortune_city.services.risky_collect_service import RiskyCollectService
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.speed_up_service import SpeedUpService

from conftest import full_box_age


TIER1_CAPACITY = float(Decimal("14.5") / 6)


@pytest.fixture
def gamble(monkeypatch):
    def _gamble(won: bool):
        monkeypatch.setattr(risky_collect_service, "roll_gamble", lambda chance: won)
    return _gamble


# Fortune's Gamble

async def test_risky_collect_win_doubles(session, make_user, make_machine, gamble):
    gamble(True)
    user = await make_user()
    machine = await make_machine(user, age_hours=full_box_age())

    result = await RiskyCollectService(session).risky_collect(machine.id, user.id)

    assert result["won"] is True
    assert float(result["final_amount"]) == pytest.approx(TIER1_CAPACITY * 2)
    assert float(user.fortune_balance) == pytest.approx(TIER1_CAPACITY * 2)
    assert machine.coin_box_current == 0
    assert result["fame_earned"] == 39 + 10


async def test_risky_collect_loss_halves(session, make_user, make_machine, gamble):
    gamble(False)
    user = await make_user()
    machine = await make_machine(user, age_hours=full_box_age())

    result = await RiskyCollectService(session).risky_collect(machine.id, user.id)

    assert result["won"] is False
    assert float(result["final_amount"]) == pytest.approx(TIER1_CAPACITY / 2)
    # The machine still pays out the whole box against its yield
    assert float(machine.profit_paid_out) == pytest.approx(TIER1_CAPACITY)


async def test_risky_collect_counts_overclock_bonus_as_paid_profit(session, make_user, make_machine, gamble):
    gamble(False)
    user = await make_user()
    machine = await make_machine(
        user, age_hours=full_box_age(), overclock_multiplier=Decimal("1.5")
    )

    result = await RiskyCollectService(session).risky_collect(machine.id, user.id)

    assert float(result["final_amount"]) == pytest.approx(TIER1_CAPACITY * 1.5 / 2)
    assert float(machine.profit_paid_out) == pytest.approx(TIER1_CAPACITY * 1.5)
    assert machine.overclock_multiplier == 0


async def test_risky_collect_needs_full_box(session, make_user, make_machine, gamble):
    gamble(True)
    user = await make_user()
    machine = await make_machine(user, age_hours=2)

    with pytest.raises(ValidationError, match="CoinBox is not full yet"):
        await RiskyCollectService(session).risky_collect(machine.id, user.id)


async def test_upgrade_gamble_level(session, make_user, make_machine):
    user = await make_user(fortune_balance=1)
    machine = await make_machine(user)
    service = RiskyCollectService(session)

    info = await service.get_gamble_info(machine.id, user.id)
    assert info["level"] == 0
    assert info["upgrade_cost"] == Decimal("0.3")

    result = await service.upgrade_gamble_level(machine.id, user.id)

    assert result["level"] == 1
    assert result["win_chance"] == 0.1533
    assert user.fortune_balance == Decimal("0.7")


async def test_gamble_level_caps(session, make_user, make_machine):
    user = await make_user(fortune_balance=100)
    machine = await make_machine(user, fortune_gamble_level=3)

    with pytest.raises(ValidationError, match="maximum"):
        await RiskyCollectService(session).upgrade_gamble_level(machine.id, user.id)


# Overclock

@pytest.fixture
async def overclock_prices(session):
    await SettingsService(session).update_settings({
        "overclock_fortune_prices": {"1": {"1.5": 2}},
        "overclock_fame_prices": {"1": {"2": 50}},
    })


async def test_overclock_with_fortune(session, make_user, make_machine, overclock_prices):
    user = await make_user(fortune_balance=5)
    machine = await make_machine(user)

    result = await OverclockService(session).purchase_overclock(machine.id, user.id, 1.5)

    assert result["cost"] == Decimal(2)
    assert machine.overclock_multiplier == Decimal("1.5")
    assert user.fortune_balance == Decimal(3)

    with pytest.raises(ValidationError, match="already active"):
        await OverclockService(session).purchase_overclock(machine.id, user.id, 1.5)


async def test_overclock_with_fame(session, make_user, make_machine, overclock_prices):
    user = await make_user(fame=60)
    machine = await make_machine(user)

    result = await OverclockService(session).purchase_overclock(
        machine.id, user.id, 2.0, PaymentMethod.FAME
    )

    assert result["cost"] == Decimal(50)
    assert user.fame == 10
    assert machine.overclock_multiplier == Decimal("2.0")


async def test_overclock_without_price(session, make_user, make_machine, overclock_prices):
    user = await make_user(fortune_balance=5)
    machine = await make_machine(user)

    with pytest.raises(ValidationError, match="No overclock price"):
        await OverclockService(session).purchase_overclock(machine.id, user.id, 1.2)

    with pytest.raises(ValidationError, match="Invalid overclock level"):
        await OverclockService(session).purchase_overclock(machine.id, user.id, 3.0)


async def test_overclock_info_lists_levels(session, make_user, make_machine, overclock_prices):
    user = await make_user()
    machine = await make_machine(user)

    info = await OverclockService(session).get_overclock_info(machine.id, user.id)

    assert info["can_purchase"] is True
    levels = {option["level"]: option for option in info["levels"]}
    assert levels[1.5]["fortune_price"] == Decimal(2)
    assert levels[1.2]["fortune_price"] is None
    assert levels[2.0]["fame_price"] == 50


# Speed-up

async def test_speed_up_with_fortune(session, make_user, make_machine):
    user = await make_user(fortune_balance=1)
    machine = await make_machine(user)
    old_expiry = machine.expires_at
    old_rate = machine.rate_per_second

    result = await SpeedUpService(session).speed_up(machine.id, user.id, 1)

    assert float(result["cost"]) == pytest.approx(0.1)
    assert machine.expires_at == old_expiry - timedelta(days=1)
    assert machine.speed_up_days == 1
    assert machine.rate_per_second > old_rate
    assert float(user.fortune_balance) == pytest.approx(0.9)


async def test_speed_up_with_fame(session, make_user, make_machine):
    user = await make_user(fame=40)
    machine = await make_machine(user)

    result = await SpeedUpService(session).speed_up(machine.id, user.id, 1, PaymentMethod.FAME)

    assert result["cost"] == Decimal(30)
    assert user.fame == 10


async def test_speed_up_cannot_reach_expiry(session, make_user, make_machine):
    user = await make_user(fortune_balance=10)
    machine = await make_machine(user)

    with pytest.raises(ValidationError, match="Cannot speed up"):
        await SpeedUpService(session).speed_up(machine.id, user.id, 3)

    info = await SpeedUpService(session).get_speed_up_info(machine.id, user.id)
    assert info["max_days"] == 2


async def test_speed_up_rejects_free_machine(session, make_user):
    user = await make_user(fortune_balance=10)
    machine = await MachineService(session).create_free_machine(user.id, 1)

    with pytest.raises(ValidationError, match="Free machines"):
        await SpeedUpService(session).speed_up(machine.id, user.id, 1)


async def test_speed_up_needs_fame(session, make_user, make_machine):
    user = await make_user(fame=5)
    machine = await make_machine(user)

    with pytest.raises(InsufficientFameError):
        await SpeedUpService(session).speed_up(machine.id, user.id, 1, PaymentMethod.FAME)


# Pawnshop

async def test_pawnshop_fresh_machine(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user)
    await FundSourceService(session).create_machine_fund_source(
        machine.id, SourceBreakdown(Decimal(10), Decimal(0), Decimal(10))
    )

    result = await PawnshopService(session).sell_to_pawnshop(machine.id, user.id)

    assert result["payout"] == Decimal(9)
    assert machine.status == MachineStatus.SOLD_PAWNSHOP.value
    assert float(user.fortune_balance) == pytest.approx(9, rel=1e-3)
    assert float(user.total_fresh_deposits) == pytest.approx(9, rel=1e-3)


async def test_pawnshop_without_fund_source_counts_as_profit(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user)

    await PawnshopService(session).sell_to_pawnshop(machine.id, user.id)

    assert user.total_fresh_deposits == 0
    assert float(user.total_profit_collected) == pytest.approx(9, rel=1e-3)


async def test_pawnshop_rejects_free_machine(session, make_user):
    user = await make_user()
    machine = await MachineService(session).create_free_machine(user.id, 1)

    info = await PawnshopService(session).get_pawnshop_info(machine.id, user.id)
    assert info["can_sell"] is False

    with pytest.raises(ValidationError, match="Free machines"):
        await PawnshopService(session).sell_to_pawnshop(machine.id, user.id)


async def test_pawnshop_unavailable_after_profit(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user, profit_paid_out=Decimal("9.5"))

    with pytest.raises(ValidationError, match="not available"):
        await PawnshopService(session).sell_to_pawnshop(machine.id, user.id)


# Collector

async def test_hire_collector_costs(session, make_user, make_machine):
    user = await make_user(fortune_balance=1)
    machine = await make_machine(user)
    service = AutoCollectService(session)

    info = await service.get_auto_collect_info(machine.id, user.id)
    assert float(info["hire_cost"]) == pytest.approx(0.45)
    assert info["hire_cost_fame"] == 38

    await service.hire_collector(machine.id, user.id)
    assert machine.has_auto_collect is True
    assert float(user.fortune_balance) == pytest.approx(0.55)

    with pytest.raises(ValidationError, match="already hired"):
        await service.hire_collector(machine.id, user.id)


async def test_hire_collector_needs_funds(session, make_user, make_machine):
    user = await make_user()
    machine = await make_machine(user)

    with pytest.raises(InsufficientFundsError):
        await AutoCollectService(session).hire_collector(machine.id, user.id)


async def test_auto_collect_pays_salary(session, make_user, make_machine):
    user = await make_user()
    await make_machine(user, age_hours=full_box_age(), has_auto_collect=True)
    await make_machine(user, tier=2, age_hours=1, has_auto_collect=True)

    result = await AutoCollectService(session).execute_for_all()

    assert result["collected"] == 1
    assert result["failed"] == 0
    assert float(result["total"]) == pytest.approx(TIER1_CAPACITY * 0.95)
    assert float(user.fortune_balance) == pytest.approx(TIER1_CAPACITY * 0.95)
    # Collector runs earn passive fame only
    assert user.fame == 39
