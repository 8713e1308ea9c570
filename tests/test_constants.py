"""
Tests for the static economy tables.
"""

import pytest

from fortune_city.constants.fame import (
    FAME_UNLOCK_COST_BY_TIER,
    calculate_collector_hire_fame_cost,
    calculate_daily_login_fame,
    calculate_speed_up_fame_cost,
    get_fame_purchase_amount,
    get_max_unlocked_tier_by_fame,
)
from fortune_city.constants.tiers import (
    MACHINE_TIERS,
    MAX_TIER,
    calculate_early_sell_commission,
    calculate_gamble_ev,
    calculate_pawnshop_payout,
    get_reinvest_reduction,
    get_tier_config,
    get_tier_config_or_raise,
    overclock_level_key,
)
from fortune_city.constants.wheel import DEFAULT_WHEEL_SECTORS
from fortune_city.core.exceptions import ValidationError


def test_tier_table_is_ordered():
    assert MAX_TIER == 10
    assert [t.tier for t in MACHINE_TIERS] == list(range(1, 11))
    prices = [t.price for t in MACHINE_TIERS]
    assert prices == sorted(prices)


def test_tier_one_numbers():
    tier = get_tier_config(1)
    assert tier.price == 10
    assert tier.lifespan_days == 3
    assert tier.profit == 4
    assert tier.to_dict()["image_url"] == "/machines/tier-1.png"


def test_unknown_tier():
    assert get_tier_config(11) is None
    with pytest.raises(ValidationError):
        get_tier_config_or_raise(0)


def test_reinvest_reduction_floor():
    assert get_reinvest_reduction(1) == 0.0
    assert get_reinvest_reduction(2) == 0.35
    assert get_reinvest_reduction(7) == 0.90
    assert get_reinvest_reduction(25) == 0.85


@pytest.mark.parametrize("paid,commission", [
    (0, 0.20),
    (1, 0.35),
    (2, 0.55),
    (3, 0.75),
    (4, 0.90),
    (5, 1.0),
])
def test_early_sell_commission_grows_with_progress(paid, commission):
    assert calculate_early_sell_commission(paid, 5) == commission


def test_early_sell_commission_without_profit():
    assert calculate_early_sell_commission(0, 0) == 1.0


def test_pawnshop_payout():
    assert calculate_pawnshop_payout(10, 0) == (9.0, True)
    payout, available = calculate_pawnshop_payout(10, 9.5)
    assert payout == 0.0
    assert available is False


def test_gamble_ev_is_below_one():
    assert calculate_gamble_ev(0) < 1
    assert calculate_gamble_ev(3) > calculate_gamble_ev(0)


def test_overclock_level_keys():
    assert overclock_level_key(1.2) == "1.2"
    assert overclock_level_key(2.0) == "2"


def test_wheel_sector_chances_sum_to_one():
    assert sum(s["chance"] for s in DEFAULT_WHEEL_SECTORS) == pytest.approx(1.0)


def test_daily_login_streak_is_capped():
    assert calculate_daily_login_fame(1) == 15
    assert calculate_daily_login_fame(2) == 17
    assert calculate_daily_login_fame(30) == 35


def test_fame_auto_unlock():
    assert get_max_unlocked_tier_by_fame(0) == 1
    assert get_max_unlocked_tier_by_fame(249) == 1
    assert get_max_unlocked_tier_by_fame(250) == 2
    assert get_max_unlocked_tier_by_fame(800) == 3
    assert FAME_UNLOCK_COST_BY_TIER[2] == 250
    assert FAME_UNLOCK_COST_BY_TIER[3] == 500


def test_fame_costs():
    assert get_fame_purchase_amount(1, False) == 20
    assert get_fame_purchase_amount(1, True) == 40
    assert calculate_speed_up_fame_cost(1, 1) == 30
    assert calculate_collector_hire_fame_cost(1) == 38
