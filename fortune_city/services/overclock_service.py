"""
Overclock: a one-shot multiplier on a machine's next collection.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tiers import (
    OVERCLOCK_LEVELS,
    overclock_bonus_percent,
    overclock_level_key,
)
from fortune_city.core.exceptions import ValidationError
from fortune_city.models.fame import FameSource
from fortune_city.models.machine import MachineStatus
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fame_service import FameService
from fortune_city.services.lookups import get_machine_or_raise, get_user_or_raise
from fortune_city.services.payments import PaymentMethod, charge
from fortune_city.services.settings_service import SettingsService, SettingsSnapshot
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


def lookup_price(prices: Dict[str, Dict[str, Any]], tier: int, level: float) -> Optional[Any]:
    return (prices or {}).get(str(tier), {}).get(overclock_level_key(level))


class OverclockService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="overclock_service")
        self.settings_service = SettingsService(db)
        self.transactions = TransactionService(db)
        self.fame = FameService(db)

    @staticmethod
    def _level_options(current: SettingsSnapshot, tier: int) -> List[Dict[str, Any]]:
        options = []
        for level in OVERCLOCK_LEVELS:
            fortune_price = lookup_price(current.overclock_fortune_prices, tier, level)
            fame_price = lookup_price(current.overclock_fame_prices, tier, level)
            options.append({
                "level": level,
                "bonus_percent": overclock_bonus_percent(level),
                "fortune_price": to_decimal(fortune_price) if fortune_price is not None else None,
                "fame_price": int(fame_price) if fame_price is not None else None,
            })
        return options

    async def get_overclock_info(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id)
        current = await self.settings_service.get_settings()
        multiplier = to_decimal(machine.overclock_multiplier)

        return {
            "machine_id": machine.id,
            "tier": machine.tier,
            "active_multiplier": multiplier if multiplier > 0 else None,
            "can_purchase": machine.status == MachineStatus.ACTIVE.value and multiplier <= 0,
            "levels": self._level_options(current, machine.tier),
        }

    async def purchase_overclock(
        self,
        machine_id: str,
        user_id: str,
        level: float,
        payment_method: PaymentMethod = PaymentMethod.FORTUNE
    ) -> Dict[str, Any]:
        if level not in OVERCLOCK_LEVELS:
            raise ValidationError(
                f"Invalid overclock level: {level}",
                {"level": level, "allowed": OVERCLOCK_LEVELS}
            )

        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        if machine.status != MachineStatus.ACTIVE.value:
            raise ValidationError("Machine is not active", {"status": machine.status})
        if to_decimal(machine.overclock_multiplier) > 0:
            raise ValidationError(
                "Overclock already active",
                {"multiplier": float(machine.overclock_multiplier)}
            )

        current = await self.settings_service.get_settings()
        prices = (
            current.overclock_fame_prices
            if payment_method == PaymentMethod.FAME
            else current.overclock_fortune_prices
        )
        price = lookup_price(prices, machine.tier, level)
        if price is None:
            raise ValidationError(
                f"No overclock price defined for tier {machine.tier}, "
                f"level x{overclock_level_key(level)}",
                {"tier": machine.tier, "level": level}
            )

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        paid = await charge(
            self.fame,
            self.transactions,
            user,
            payment_method,
            fortune_price=to_decimal(price),
            fame_price=int(price),
            transaction_type=TransactionType.OVERCLOCK_PURCHASE,
            fame_source=FameSource.OVERCLOCK,
            description=f"Overclock x{overclock_level_key(level)}",
            machine_id=machine.id,
        )

        machine.overclock_multiplier = Decimal(str(level))
        await self.db.flush()

        self.logger.info(
            "Overclock purchased",
            machine_id=machine_id,
            level=level,
            payment_method=payment_method.value,
            cost=str(paid),
        )
        return {
            "machine": machine,
            "level": level,
            "cost": paid,
            "payment_method": payment_method.value,
            "new_balance": user.fortune_balance,
            "fame": user.fame,
        }
