"""Fame (⚡) economy constants."""

import math
from typing import Dict

from .tiers import MAX_TIER

FAME_PER_HOUR: Dict[int, int] = {
    1: 3,
    2: 5,
    3: 8,
    4: 12,
    5: 18,
    6: 28,
    7: 42,
    8: 65,
    9: 100,
    10: 150,
}

FAME_PER_MANUAL_COLLECT = 10

FAME_DAILY_LOGIN = 15
FAME_STREAK_BONUS = 2  # per consecutive day after the first
FAME_STREAK_CAP = 20

FAME_PURCHASE_BY_TIER: Dict[int, int] = {
    1: 20,
    2: 30,
    3: 50,
    4: 80,
    5: 120,
    6: 200,
    7: 350,
    8: 550,
    9: 800,
    10: 1200,
}
FAME_UPGRADE_MULTIPLIER = 2  # first purchase of a new max tier

# Lifetime fame needed for a tier to unlock on its own
FAME_AUTO_UNLOCK_THRESHOLDS: Dict[int, int] = {
    1: 0,
    2: 250,
    3: 750,
    4: 1750,
    5: 3750,
    6: 7750,
    7: 15250,
    8: 29250,
    9: 55250,
    10: 100250,
}

TIER_UNLOCK_FEE_PERCENT = 0.10

SPEED_UP_COST_PERCENT_PER_DAY = 0.01
SPEED_UP_FAME_HOURS_PER_DAY = 10

COLLECTOR_HIRE_FAME_HOURS = 12.5

# Passive fame is not granted for less than this many hours
MIN_PASSIVE_FAME_HOURS = 0.01


def get_fame_per_hour(tier: int) -> int:
    return FAME_PER_HOUR.get(tier, 0)


def calculate_daily_login_fame(streak: int) -> int:
    streak_bonus = min(max(streak - 1, 0) * FAME_STREAK_BONUS, FAME_STREAK_CAP)
    return FAME_DAILY_LOGIN + streak_bonus


def get_fame_purchase_amount(tier: int, is_upgrade: bool) -> int:
    base = FAME_PURCHASE_BY_TIER.get(tier, 0)
    return base * FAME_UPGRADE_MULTIPLIER if is_upgrade else base


def get_max_unlocked_tier_by_fame(total_fame_earned: int) -> int:
    max_tier = 1
    for tier in range(2, MAX_TIER + 1):
        if total_fame_earned >= FAME_AUTO_UNLOCK_THRESHOLDS[tier]:
            max_tier = tier
        else:
            break
    return max_tier


def calculate_tier_unlock_fee(tier_price: float) -> float:
    return tier_price * TIER_UNLOCK_FEE_PERCENT


def calculate_speed_up_fortune_cost(machine_price: float, days: int) -> float:
    return machine_price * SPEED_UP_COST_PERCENT_PER_DAY * days


def calculate_speed_up_fame_cost(tier: int, days: int) -> int:
    return math.ceil(get_fame_per_hour(tier) * SPEED_UP_FAME_HOURS_PER_DAY * days)


def calculate_collector_hire_fame_cost(tier: int) -> int:
    return math.ceil(get_fame_per_hour(tier) * COLLECTOR_HIRE_FAME_HOURS)


# Fame spent to unlock a tier early: the gap between its auto-unlock
# threshold and the previous tier's
FAME_UNLOCK_COST_BY_TIER: Dict[int, int] = {
    tier: FAME_AUTO_UNLOCK_THRESHOLDS[tier] - FAME_AUTO_UNLOCK_THRESHOLDS[tier - 1]
    for tier in range(2, MAX_TIER + 1)
}
