"""
Pawnshop: sell a running machine back for 90% of its tier price minus the
profit it already paid out.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tiers import (
    PAWNSHOP_COMMISSION_RATE,
    calculate_pawnshop_payout,
    get_tier_config_or_raise,
)
from fortune_city.core.exceptions import ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.machine import Machine, MachineStatus
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.lookups import get_machine_or_raise, get_user_or_raise
from fortune_city.services.machine_service import IncomeState, calculate_income
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


def pawnshop_quote(machine: Machine, state: IncomeState) -> Dict[str, Any]:
    price = Decimal(get_tier_config_or_raise(machine.tier).price)
    payout, available = calculate_pawnshop_payout(float(price), float(machine.profit_paid_out))
    payout = to_decimal(payout)

    return {
        "tier_price": price,
        "collected_profit": to_decimal(machine.profit_paid_out),
        "commission_rate": to_decimal(PAWNSHOP_COMMISSION_RATE),
        "commission": price * to_decimal(PAWNSHOP_COMMISSION_RATE),
        "payout": payout,
        "coin_box": state.coin_box_current,
        "total_returned": payout + state.coin_box_current,
        "available": available,
    }


class PawnshopService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="pawnshop_service")
        self.transactions = TransactionService(db)
        self.fund_sources = FundSourceService(db)

    async def get_pawnshop_info(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id)
        quote = pawnshop_quote(machine, calculate_income(machine))
        quote["can_sell"] = (
            quote["available"]
            and not machine.is_free
            and machine.status == MachineStatus.ACTIVE.value
        )
        return quote

    async def sell_to_pawnshop(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        """
        Sell a machine to the pawnshop.

        The coin box is paid out as a regular collection. The pawn payout
        goes back to the trackers in the machine's fresh/profit proportion.
        """
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        if machine.status != MachineStatus.ACTIVE.value:
            raise ValidationError("Can only sell active machines", {"status": machine.status})
        if machine.is_free:
            raise ValidationError("Free machines cannot be sold to the pawnshop")

        now = datetime.utcnow()
        state = calculate_income(machine, now)
        quote = pawnshop_quote(machine, state)
        if not quote["available"]:
            raise ValidationError(
                "Pawnshop is not available: collected profit already covers the payout",
                {"collected_profit": float(quote["collected_profit"])}
            )

        user = await get_user_or_raise(self.db, user_id, for_update=True)

        machine.status = MachineStatus.SOLD_PAWNSHOP.value
        machine.coin_box_current = ZERO
        machine.last_calculated_at = now
        machine.accumulated_income = to_decimal(machine.accumulated_income) + state.coin_box_current
        machine.profit_paid_out = to_decimal(machine.profit_paid_out) + state.current_profit
        machine.principal_paid_out = to_decimal(machine.principal_paid_out) + state.current_principal
        machine.has_auto_collect = False
        machine.overclock_multiplier = ZERO

        user.fortune_balance = to_decimal(user.fortune_balance) + quote["total_returned"]
        self.fund_sources.record_profit_collection(user, state.current_profit)
        await self.fund_sources.propagate_machine_fund_source_to_balance(
            user, machine.id, quote["payout"] + state.current_principal
        )

        await self.transactions.create(
            user_id=user_id,
            machine_id=machine_id,
            type=TransactionType.MACHINE_PAWNSHOP_SELL,
            amount=quote["total_returned"],
            tax_amount=quote["commission"],
            tax_rate=quote["commission_rate"],
        )

        self.logger.info(
            "Machine sold to pawnshop",
            machine_id=machine_id,
            user_id=user_id,
            payout=str(quote["payout"]),
            coin_box=str(state.coin_box_current),
        )
        return {
            "machine": machine,
            "payout": quote["payout"],
            "coin_box": state.coin_box_current,
            "total_returned": quote["total_returned"],
            "commission": quote["commission"],
            "new_balance": user.fortune_balance,
        }
