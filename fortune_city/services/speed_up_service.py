"""
Speed-up: shorten a machine's remaining life by whole days.

The remaining payout is spread over the shorter remainder, so the rate
and coin box capacity go up while the total yield stays the same.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.fame import (
    calculate_speed_up_fame_cost,
    calculate_speed_up_fortune_cost,
)
from fortune_city.constants.tiers import COIN_BOX_CAPACITY_HOURS
from fortune_city.core.exceptions import ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.fame import FameSource
from fortune_city.models.machine import Machine, MachineStatus
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fame_service import FameService
from fortune_city.services.lookups import get_machine_or_raise, get_user_or_raise
from fortune_city.services.machine_service import (
    SECONDS_PER_DAY, calculate_income, settle_coin_box
)
from fortune_city.services.payments import PaymentMethod, charge
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


def remaining_days(machine: Machine, now: datetime) -> float:
    return max(0.0, (machine.expires_at - now).total_seconds() / SECONDS_PER_DAY)


class SpeedUpService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="speed_up_service")
        self.transactions = TransactionService(db)
        self.fame = FameService(db)

    async def get_speed_up_info(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id)
        days_left = remaining_days(machine, datetime.utcnow())
        max_days = max(0, math.ceil(days_left) - 1)

        return {
            "machine_id": machine.id,
            "remaining_days": days_left,
            "max_days": max_days,
            "speed_up_days": machine.speed_up_days,
            "can_speed_up": (
                machine.status == MachineStatus.ACTIVE.value
                and not machine.is_free
                and max_days > 0
            ),
            "fortune_cost_per_day": to_decimal(calculate_speed_up_fortune_cost(float(machine.purchase_price), 1)),
            "fame_cost_per_day": calculate_speed_up_fame_cost(machine.tier, 1),
        }

    async def speed_up(
        self,
        machine_id: str,
        user_id: str,
        days: int,
        payment_method: PaymentMethod = PaymentMethod.FORTUNE
    ) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        if machine.status != MachineStatus.ACTIVE.value:
            raise ValidationError("Machine is not active", {"status": machine.status})
        if machine.is_free:
            raise ValidationError("Free machines cannot be sped up")
        if days < 1:
            raise ValidationError("Days must be at least 1", {"days": days})

        now = datetime.utcnow()
        days_left = remaining_days(machine, now)
        if days >= days_left:
            raise ValidationError(
                f"Cannot speed up by {days} days, only {days_left:.2f} days remain",
                {"days": days, "remaining_days": days_left}
            )

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        paid = await charge(
            self.fame,
            self.transactions,
            user,
            payment_method,
            fortune_price=to_decimal(calculate_speed_up_fortune_cost(float(machine.purchase_price), days)),
            fame_price=calculate_speed_up_fame_cost(machine.tier, days),
            transaction_type=TransactionType.SPEED_UP,
            fame_source=FameSource.SPEED_UP,
            description=f"Speed up {days} day(s)",
            machine_id=machine.id,
        )

        # Income earned so far stays in the box at the old rate
        settle_coin_box(machine, calculate_income(machine, now), now)

        new_expires_at = machine.expires_at - timedelta(days=days)
        remaining_seconds = Decimal(int((new_expires_at - now).total_seconds()))
        remaining_payout = max(
            ZERO,
            to_decimal(machine.total_yield)
            - to_decimal(machine.profit_paid_out)
            - to_decimal(machine.principal_paid_out)
            - to_decimal(machine.coin_box_current),
        )

        machine.expires_at = new_expires_at
        machine.rate_per_second = remaining_payout / remaining_seconds
        machine.coin_box_capacity = machine.rate_per_second * COIN_BOX_CAPACITY_HOURS * 3600
        machine.speed_up_days = (machine.speed_up_days or 0) + days
        await self.db.flush()

        self.logger.info(
            "Machine sped up",
            machine_id=machine_id,
            days=days,
            payment_method=payment_method.value,
            cost=str(paid),
            new_rate=str(machine.rate_per_second),
        )
        return {
            "machine": machine,
            "days": days,
            "cost": paid,
            "payment_method": payment_method.value,
            "new_expires_at": new_expires_at,
            "new_rate_per_second": machine.rate_per_second,
            "new_balance": user.fortune_balance,
            "fame": user.fame,
        }
