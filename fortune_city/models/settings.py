"""
System settings: a single row (id "default") of tunable game parameters.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import Integer, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from fortune_city.constants import wheel as wheel_defaults
from fortune_city.constants import tokens

from .base import BaseModel, TimestampMixin, Money

DEFAULT_SETTINGS_ID = "default"


class SystemSettings(BaseModel, TimestampMixin):
    __tablename__ = "system_settings"

    max_global_tier: Mapped[int] = mapped_column(
        Integer,
        default=1,
        comment="Highest tier open for purchase to everyone"
    )

    # Prelaunch
    is_prelaunch: Mapped[bool] = mapped_column(Boolean, default=False)
    prelaunch_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Withdrawals
    min_withdrawal_amount: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(tokens.DEFAULT_MIN_WITHDRAWAL)
    )
    max_withdrawal_amount: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(tokens.DEFAULT_MAX_WITHDRAWAL)
    )
    wallet_connect_fee_sol: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(str(tokens.DEFAULT_WALLET_CONNECT_FEE_SOL))
    )

    # Wheel
    wheel_bet_amount: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(wheel_defaults.DEFAULT_WHEEL_BET_AMOUNT)
    )
    wheel_multipliers: Mapped[List[int]] = mapped_column(
        JSON, default=lambda: list(wheel_defaults.DEFAULT_WHEEL_MULTIPLIERS)
    )
    wheel_sectors: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=lambda: [dict(s) for s in wheel_defaults.DEFAULT_WHEEL_SECTORS]
    )
    wheel_burn_rate: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(str(wheel_defaults.DEFAULT_WHEEL_BURN_RATE))
    )
    wheel_pool_rate: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(str(wheel_defaults.DEFAULT_WHEEL_POOL_RATE))
    )
    wheel_jackpot_cap: Mapped[Decimal] = mapped_column(
        Money, default=Decimal(wheel_defaults.DEFAULT_WHEEL_JACKPOT_CAP)
    )
    wheel_free_spins_base: Mapped[int] = mapped_column(
        Integer, default=wheel_defaults.DEFAULT_FREE_SPINS_BASE
    )
    wheel_free_spins_per_referral: Mapped[int] = mapped_column(
        Integer, default=wheel_defaults.DEFAULT_FREE_SPINS_PER_REFERRAL
    )

    # Overclock prices: {"<tier>": {"<level>": price}}
    overclock_fortune_prices: Mapped[Dict[str, Dict[str, float]]] = mapped_column(
        JSON, default=dict
    )
    overclock_fame_prices: Mapped[Dict[str, Dict[str, int]]] = mapped_column(
        JSON, default=dict
    )
