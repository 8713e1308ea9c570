"""
Collectors: hired per machine, they empty full coin boxes on a schedule
and keep a salary cut of every collection.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.fame import calculate_collector_hire_fame_cost
from fortune_city.constants.tiers import (
    COLLECTOR_HIRE_PERCENT,
    COLLECTOR_SALARY_PERCENT,
    calculate_collector_hire_cost,
)
from fortune_city.core.exceptions import FortuneCityException, ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.fame import FameSource
from fortune_city.models.machine import Machine, MachineStatus
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fame_service import FameService
from fortune_city.services.lookups import get_machine_or_raise, get_user_or_raise
from fortune_city.services.machine_service import MachineService, calculate_income
from fortune_city.services.payments import PaymentMethod, charge
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


class AutoCollectService:
    """Collector hire and scheduled collection."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="auto_collect_service")
        self.machines = MachineService(db)
        self.transactions = TransactionService(db)
        self.fame = FameService(db)

    @staticmethod
    def hire_costs(tier: int) -> Dict[str, Any]:
        return {
            "fortune": to_decimal(calculate_collector_hire_cost(tier, COLLECTOR_HIRE_PERCENT)),
            "fame": calculate_collector_hire_fame_cost(tier),
        }

    async def get_auto_collect_info(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id)
        costs = self.hire_costs(machine.tier)
        return {
            "machine_id": machine.id,
            "has_auto_collect": machine.has_auto_collect,
            "purchased_at": machine.auto_collect_purchased_at,
            "hire_cost": costs["fortune"],
            "hire_cost_fame": costs["fame"],
            "salary_percent": COLLECTOR_SALARY_PERCENT,
            "can_hire": machine.status == MachineStatus.ACTIVE.value and not machine.has_auto_collect,
        }

    async def hire_collector(
        self,
        machine_id: str,
        user_id: str,
        payment_method: PaymentMethod = PaymentMethod.FORTUNE
    ) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        if machine.status != MachineStatus.ACTIVE.value:
            raise ValidationError("Machine is not active", {"status": machine.status})
        if machine.has_auto_collect:
            raise ValidationError("Collector already hired")

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        costs = self.hire_costs(machine.tier)

        paid = await charge(
            self.fame,
            self.transactions,
            user,
            payment_method,
            fortune_price=costs["fortune"],
            fame_price=costs["fame"],
            transaction_type=TransactionType.COLLECTOR_PURCHASE,
            fame_source=FameSource.COLLECTOR_HIRE,
            description=f"Collector for tier {machine.tier}",
            machine_id=machine.id,
        )

        machine.has_auto_collect = True
        machine.auto_collect_purchased_at = datetime.utcnow()
        await self.db.flush()

        self.logger.info(
            "Collector hired",
            machine_id=machine_id,
            user_id=user_id,
            payment_method=payment_method.value,
            cost=str(paid),
        )
        return {
            "machine": machine,
            "payment_method": payment_method.value,
            "cost": paid,
            "new_balance": user.fortune_balance,
            "fame": user.fame,
        }

    async def execute_auto_collect(self, machine: Machine) -> Optional[Dict[str, Any]]:
        """
        Collect one machine for its collector and pay the salary.

        Returns None when the coin box is not collectable yet.
        """
        state = calculate_income(machine)
        if not state.can_collect or state.coin_box_current <= 0:
            return None

        result = await self.machines.collect_coins(machine.id, machine.user_id, is_auto_collect=True)
        collected = result["collected"]

        salary = collected * Decimal(COLLECTOR_SALARY_PERCENT) / 100
        if salary > 0:
            user = await get_user_or_raise(self.db, machine.user_id, for_update=True)
            user.fortune_balance = to_decimal(user.fortune_balance) - salary
            user.total_profit_collected = max(
                ZERO, to_decimal(user.total_profit_collected) - salary
            )
            await self.transactions.create(
                user_id=machine.user_id,
                machine_id=machine.id,
                type=TransactionType.COLLECTOR_SALARY,
                amount=salary,
                description=f"Collector salary {COLLECTOR_SALARY_PERCENT}%",
            )

        return {
            "machine_id": machine.id,
            "collected": collected,
            "salary": salary,
            "net": collected - salary,
        }

    async def execute_for_all(self) -> Dict[str, Any]:
        """Run every hired collector. One failing machine does not stop the rest."""
        result = await self.db.execute(
            select(Machine).where(
                Machine.has_auto_collect.is_(True),
                Machine.status.in_([MachineStatus.ACTIVE.value, MachineStatus.EXPIRED.value]),
            )
        )

        collected = 0
        total = ZERO
        failed = 0
        for machine in result.scalars().all():
            try:
                outcome = await self.execute_auto_collect(machine)
            except FortuneCityException as e:
                failed += 1
                self.logger.warning(
                    "Auto collect failed",
                    machine_id=machine.id,
                    error=e.message,
                )
                continue

            if outcome is not None:
                collected += 1
                total += outcome["net"]

        if collected or failed:
            self.logger.info(
                "Auto collect run finished",
                collected=collected,
                failed=failed,
                total=str(total),
            )
        return {"collected": collected, "failed": failed, "total": total}
