"""
Machine tier table and the economy constants derived from it.

Prices and amounts are in USD-pegged FORTUNE dollars. Percentages are
plain numbers (145 means 145%); rates are fractions (0.05 means 5%).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fortune_city.core.exceptions import ValidationError


@dataclass(frozen=True)
class MachineTier:
    """Static configuration of a machine tier."""
    tier: int
    name: str
    emoji: str
    price: int
    lifespan_days: int
    yield_percent: int

    @property
    def image_url(self) -> str:
        return f"/machines/tier-{self.tier}.png"

    @property
    def profit(self) -> int:
        return round(self.price * (self.yield_percent / 100) - self.price)

    @property
    def daily_rate(self) -> float:
        return round(self.yield_percent / self.lifespan_days, 2)

    def to_dict(self) -> Dict:
        return {
            "tier": self.tier,
            "name": self.name,
            "emoji": self.emoji,
            "image_url": self.image_url,
            "price": self.price,
            "lifespan_days": self.lifespan_days,
            "yield_percent": self.yield_percent,
            "profit": self.profit,
            "daily_rate": self.daily_rate,
        }


MACHINE_TIERS: Tuple[MachineTier, ...] = (
    MachineTier(1, "RUSTY LEVER", "🟤", 10, 3, 145),
    MachineTier(2, "LUCKY CHERRY", "🟠", 30, 4, 152),
    MachineTier(3, "GOLDEN 7s", "🟡", 75, 5, 155),
    MachineTier(4, "NEON NIGHTS", "🟢", 200, 6, 154),
    MachineTier(5, "DIAMOND DASH", "🔵", 500, 7, 156),
    MachineTier(6, "VEGAS QUEEN", "🟣", 1500, 8, 156),
    MachineTier(7, "PLATINUM RUSH", "⚪", 4000, 10, 165),
    MachineTier(8, "HIGH ROLLER", "🔴", 12000, 11, 166),
    MachineTier(9, "JACKPOT EMPEROR", "⚫", 35000, 13, 172),
    MachineTier(10, "FORTUNE KING", "👑", 100000, 14, 170),
)

MAX_TIER = len(MACHINE_TIERS)

_TIERS_BY_NUMBER: Dict[int, MachineTier] = {t.tier: t for t in MACHINE_TIERS}


def get_tier_config(tier: int) -> Optional[MachineTier]:
    return _TIERS_BY_NUMBER.get(tier)


def get_tier_config_or_raise(tier: int) -> MachineTier:
    config = get_tier_config(tier)
    if config is None:
        raise ValidationError(
            f"Invalid tier: {tier}. Must be between 1 and {MAX_TIER}",
            {"tier": tier}
        )
    return config


# Withdrawal tax by the highest tier a user has ever bought
TAX_RATES_BY_TIER: Dict[int, float] = {
    1: 0.50,
    2: 0.45,
    3: 0.40,
    4: 0.35,
    5: 0.30,
    6: 0.25,
    7: 0.20,
    8: 0.15,
    9: 0.10,
    10: 0.05,
}

# Profit reduction for re-buying the same tier, by reinvest round
REINVEST_REDUCTION: Dict[int, float] = {
    1: 0.0,
    2: 0.35,
    3: 0.50,
    4: 0.60,
    5: 0.70,
    6: 0.80,
    7: 0.90,
}
REINVEST_REDUCTION_FLOOR = 0.85


def get_reinvest_reduction(reinvest_round: int) -> float:
    return REINVEST_REDUCTION.get(reinvest_round, REINVEST_REDUCTION_FLOOR)


# Coin box holds this many hours of income for every machine
COIN_BOX_CAPACITY_HOURS = 12


@dataclass(frozen=True)
class GambleLevel:
    level: int
    win_chance: float
    cost_percent: int


FORTUNE_GAMBLE_LEVELS: Tuple[GambleLevel, ...] = (
    GambleLevel(0, 0.1333, 0),
    GambleLevel(1, 0.1533, 3),
    GambleLevel(2, 0.1733, 6),
    GambleLevel(3, 0.1867, 10),
)
MAX_GAMBLE_LEVEL = FORTUNE_GAMBLE_LEVELS[-1].level

GAMBLE_WIN_MULTIPLIER = 2.0
GAMBLE_LOSE_MULTIPLIER = 0.5


def get_gamble_level_config(level: int) -> GambleLevel:
    return FORTUNE_GAMBLE_LEVELS[min(max(level, 0), len(FORTUNE_GAMBLE_LEVELS) - 1)]


def calculate_gamble_ev(level: int) -> float:
    config = get_gamble_level_config(level)
    return (
        config.win_chance * GAMBLE_WIN_MULTIPLIER
        + (1 - config.win_chance) * GAMBLE_LOSE_MULTIPLIER
    )


# Collector (auto collect)
COLLECTOR_HIRE_PERCENT = 10  # of gross profit
COLLECTOR_SALARY_PERCENT = 5  # of each collection


def calculate_collector_hire_cost(tier: int, hire_percent: float = COLLECTOR_HIRE_PERCENT) -> float:
    config = get_tier_config(tier)
    if config is None:
        return 0.0
    gross_profit = config.price * (config.yield_percent / 100 - 1)
    return gross_profit * (hire_percent / 100)


# Referral bonuses by depth
REFERRAL_RATES: Dict[int, float] = {
    1: 0.05,
    2: 0.03,
    3: 0.01,
}
REFERRAL_MAX_LEVELS = 3


def calculate_early_sell_commission(profit_paid_out: float, profit_amount: float) -> float:
    """
    Commission on the unreturned principal when a machine is sold early.

    The closer the machine is to breakeven the more of the principal the
    house keeps; after breakeven the principal is not refundable at all.
    """
    if profit_amount == 0:
        return 1.0

    progress_percent = profit_paid_out / profit_amount * 100

    if progress_percent < 20:
        return 0.20
    if progress_percent < 40:
        return 0.35
    if progress_percent < 60:
        return 0.55
    if progress_percent < 80:
        return 0.75
    if progress_percent < 100:
        return 0.90
    return 1.0


def calculate_machine_wear(
    started_at: datetime,
    expires_at: datetime,
    now: Optional[datetime] = None,
) -> float:
    """Percentage (0-100) of the machine lifespan already used."""
    now = now or datetime.utcnow()
    total = (expires_at - started_at).total_seconds()
    if total <= 0:
        return 100.0
    elapsed = min((now - started_at).total_seconds(), total)
    return max(0.0, min(100.0, elapsed / total * 100))


PAWNSHOP_COMMISSION_RATE = 0.10


def calculate_pawnshop_payout(machine_price: float, collected_profit: float) -> Tuple[float, bool]:
    """Return (payout, is_available). Unavailable once profit covers 90% of the price."""
    payout = machine_price * (1 - PAWNSHOP_COMMISSION_RATE) - collected_profit
    return max(0.0, payout), payout > 0


# Overclock multipliers a machine can be boosted with before a collection
OVERCLOCK_LEVELS: List[float] = [1.2, 1.5, 2.0]


def overclock_level_key(level: float) -> str:
    """Settings key for an overclock level: 1.2 -> "1.2", 2.0 -> "2"."""
    return str(int(level)) if float(level).is_integer() else str(level)


def overclock_bonus_percent(level: float) -> int:
    return round((level - 1) * 100)