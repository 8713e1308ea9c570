"""Default prize wheel configuration, copied into system settings on first start."""

from typing import Dict, List, Union

JACKPOT_SECTOR = "jackpot"

DEFAULT_WHEEL_SECTORS: List[Dict[str, Union[str, float]]] = [
    {"sector": "lose", "chance": 0.40, "multiplier": 0},
    {"sector": "x1.5", "chance": 0.25, "multiplier": 1.5},
    {"sector": "x2", "chance": 0.20, "multiplier": 2},
    {"sector": "x5", "chance": 0.10, "multiplier": 5},
    {"sector": JACKPOT_SECTOR, "chance": 0.05, "multiplier": 0},
]

DEFAULT_WHEEL_BET_AMOUNT = 1
DEFAULT_WHEEL_MULTIPLIERS: List[int] = [1, 5, 50]
DEFAULT_WHEEL_BURN_RATE = 0.5
DEFAULT_WHEEL_POOL_RATE = 0.5
DEFAULT_WHEEL_JACKPOT_CAP = 1000
DEFAULT_FREE_SPINS_BASE = 3
DEFAULT_FREE_SPINS_PER_REFERRAL = 1

RECENT_WINS_LIMIT = 20
