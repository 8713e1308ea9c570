"""
System settings schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from fortune_city.constants.tiers import MAX_TIER


class MaxTierRequest(BaseModel):
    max_global_tier: int = Field(ge=1, le=MAX_TIER)


class SettingsUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their value."""
    max_global_tier: Optional[int] = Field(default=None, ge=1, le=MAX_TIER)
    is_prelaunch: Optional[bool] = None
    prelaunch_ends_at: Optional[datetime] = None
    min_withdrawal_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_withdrawal_amount: Optional[Decimal] = Field(default=None, gt=0)
    wallet_connect_fee_sol: Optional[Decimal] = Field(default=None, ge=0)
    wheel_bet_amount: Optional[Decimal] = Field(default=None, gt=0)
    wheel_multipliers: Optional[List[int]] = None
    wheel_sectors: Optional[List[Dict[str, Any]]] = None
    wheel_burn_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    wheel_pool_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    wheel_jackpot_cap: Optional[Decimal] = Field(default=None, ge=0)
    wheel_free_spins_base: Optional[int] = Field(default=None, ge=0)
    wheel_free_spins_per_referral: Optional[int] = Field(default=None, ge=0)
    overclock_fortune_prices: Optional[Dict[str, Dict[str, float]]] = None
    overclock_fame_prices: Optional[Dict[str, Dict[str, int]]] = None
