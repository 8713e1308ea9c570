"""
Machine schemas: purchases, collections and add-ons.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from fortune_city.constants.tiers import MAX_TIER, get_tier_config
from fortune_city.models.machine import Machine
from fortune_city.services.machine_service import calculate_income
from fortune_city.services.payments import PaymentMethod


class PurchaseMachineRequest(BaseModel):
    """Buy a machine of a tier."""
    tier: int = Field(ge=1, le=MAX_TIER, description="Machine tier")


class TierRequest(BaseModel):
    tier: int = Field(ge=2, le=MAX_TIER, description="Tier to unlock")


class PaymentRequest(BaseModel):
    """Add-on bought with FORTUNE or Fame."""
    payment_method: PaymentMethod = PaymentMethod.FORTUNE


class OverclockRequest(PaymentRequest):
    level: float = Field(gt=1, description="Collection multiplier, e.g. 1.5 or 2")


class SpeedUpRequest(PaymentRequest):
    days: int = Field(ge=1, description="Days to cut from the remaining lifespan")


class IncomeResponse(BaseModel):
    accumulated: float
    rate_per_second: float
    coin_box_capacity: float
    coin_box_current: float
    is_full: bool
    seconds_until_full: int
    is_expired: bool
    can_collect: bool
    profit_remaining: float
    principal_remaining: float
    is_breakeven_reached: bool


class MachineResponse(BaseModel):
    """Machine with its live coin box."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    tier: int
    tier_name: Optional[str] = None
    status: str
    purchase_price: float
    total_yield: float
    profit_amount: float
    lifespan_days: int
    reinvest_round: int
    profit_reduction_rate: float
    is_free: bool
    started_at: datetime
    expires_at: datetime
    rate_per_second: float
    coin_box_capacity: float
    accumulated_income: float
    profit_paid_out: float
    principal_paid_out: float
    overclock_multiplier: float
    fortune_gamble_level: int
    speed_up_days: int
    has_auto_collect: bool
    created_at: datetime
    income: Optional[IncomeResponse] = None


def machine_payload(machine: Machine) -> dict:
    """JSON-ready machine including a fresh income snapshot."""
    config = get_tier_config(machine.tier)
    response = MachineResponse.model_validate(machine)
    response.tier_name = config.name if config else None
    response.income = IncomeResponse(**calculate_income(machine).to_dict())
    return response.model_dump(mode="json")


def result_payload(result: dict) -> dict:
    """Service result with its machine serialized and the user row dropped."""
    payload = {key: value for key, value in result.items() if key not in ("machine", "user")}
    if result.get("machine") is not None:
        payload["machine"] = machine_payload(result["machine"])
    return payload
