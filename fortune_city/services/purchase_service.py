"""
Machine purchases.

A purchase draws from bonus_fortune first, then fortune_balance, then
referral_balance. Only the fortune_balance part carries a fresh/profit
split, and only its fresh share pays referral bonuses.
"""

from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.fame import (
    FAME_AUTO_UNLOCK_THRESHOLDS,
    calculate_tier_unlock_fee,
)
from fortune_city.constants.tiers import (
    TAX_RATES_BY_TIER,
    get_reinvest_reduction,
    get_tier_config_or_raise,
)
from fortune_city.core.exceptions import InsufficientFundsError, ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.machine import Machine, MachineStatus, COMPLETED_STATUSES
from fortune_city.models.transaction import Transaction, TransactionType
from fortune_city.models.user import User
from fortune_city.services.fame_service import FameService
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.machine_service import MachineService
from fortune_city.services.referral_service import ReferralService
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


def split_purchase_payment(user: User, price: Decimal) -> Dict[str, Decimal]:
    """How much of a price each balance covers: bonus, fortune, referral."""
    remaining = price

    from_bonus = min(to_decimal(user.bonus_fortune), remaining)
    remaining -= from_bonus

    from_fortune = min(to_decimal(user.fortune_balance), remaining)
    remaining -= from_fortune

    from_referral = min(to_decimal(user.referral_balance), remaining)

    return {
        "from_bonus": from_bonus,
        "from_fortune": from_fortune,
        "from_referral": from_referral,
    }


class PurchaseService:
    """Buying machines."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="purchase_service")
        self.settings_service = SettingsService(db)
        self.machines = MachineService(db)
        self.fund_sources = FundSourceService(db)
        self.transactions = TransactionService(db)
        self.referrals = ReferralService(db)
        self.fame = FameService(db)

    async def _has_running_machine(self, user_id: str, tier: int) -> bool:
        result = await self.db.execute(
            select(Machine.id).where(
                Machine.user_id == user_id,
                Machine.tier == tier,
                Machine.is_free.is_(False),
                Machine.status.in_([MachineStatus.ACTIVE.value, MachineStatus.FROZEN.value]),
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _completed_paid_machines(self, user_id: str, tier: int) -> int:
        result = await self.db.execute(
            select(func.count(Machine.id)).where(
                Machine.user_id == user_id,
                Machine.tier == tier,
                Machine.is_free.is_(False),
                Machine.status.in_(COMPLETED_STATUSES),
            )
        )
        return result.scalar_one()

    async def get_next_reinvest_round(self, user: User, tier: int) -> int:
        if tier > (user.max_tier_reached or 0):
            return 1
        return await self._completed_paid_machines(user.id, tier) + 1

    async def _max_available_tier(self, user: User) -> int:
        max_global = await self.settings_service.get_max_global_tier()
        return max(max_global, user.max_tier_unlocked or 1)

    async def purchase_machine(self, user_id: str, tier: int) -> Dict[str, Any]:
        """
        Buy a machine of the given tier.

        Raises:
            ValidationError: tier locked or a machine of this tier still running
            InsufficientFundsError: bonus + fortune + referral balances below price
        """
        config = get_tier_config_or_raise(tier)
        user = await get_user_or_raise(self.db, user_id, for_update=True)

        max_available = await self._max_available_tier(user)
        if tier > max_available:
            raise ValidationError(
                f"Tier {tier} is locked. Max available tier: {max_available}",
                {"tier": tier, "max_available_tier": max_available}
            )

        if await self._has_running_machine(user_id, tier):
            raise ValidationError(
                f"You already have an active machine of tier {tier}",
                {"tier": tier}
            )

        price = Decimal(config.price)
        if user.total_spendable < price:
            raise InsufficientFundsError(price, user.total_spendable)

        is_upgrade = tier > (user.max_tier_reached or 0)
        reinvest_round = await self.get_next_reinvest_round(user, tier)

        payment = split_purchase_payment(user, price)
        breakdown = self.fund_sources.calculate_source_breakdown(
            user.fortune_balance,
            user.total_fresh_deposits,
            payment["from_fortune"],
        )

        user.bonus_fortune = to_decimal(user.bonus_fortune) - payment["from_bonus"]
        user.fortune_balance = to_decimal(user.fortune_balance) - payment["from_fortune"]
        user.referral_balance = to_decimal(user.referral_balance) - payment["from_referral"]
        self.fund_sources.record_spend(user, breakdown)

        if is_upgrade:
            user.max_tier_reached = tier
            user.current_tax_rate = to_decimal(TAX_RATES_BY_TIER[tier])

        machine = await self.machines.create(user_id, tier, reinvest_round)
        await self.fund_sources.create_machine_fund_source(machine.id, breakdown)

        await self.transactions.create(
            user_id=user_id,
            machine_id=machine.id,
            type=TransactionType.MACHINE_PURCHASE,
            amount=price,
            description=f"{config.name} (round {reinvest_round})",
        )

        referral = await self.referrals.process_referral_bonus(
            user_id, machine.id, breakdown.fresh_deposit
        )
        fame_earned = await self.fame.earn_purchase_fame(user, tier, is_upgrade)

        await self.db.flush()

        self.logger.info(
            "Machine purchased",
            user_id=user_id,
            machine_id=machine.id,
            tier=tier,
            reinvest_round=reinvest_round,
            is_upgrade=is_upgrade,
            fresh=str(breakdown.fresh_deposit),
            profit=str(breakdown.profit_derived),
        )

        return {
            "machine": machine,
            "price": price,
            "paid_from_bonus": payment["from_bonus"],
            "paid_from_fortune": payment["from_fortune"],
            "paid_from_referral": payment["from_referral"],
            "fresh_amount": breakdown.fresh_deposit,
            "profit_amount": breakdown.profit_derived,
            "is_upgrade": is_upgrade,
            "referral_bonus_total": referral["total_distributed"],
            "fame_earned": fame_earned,
            "user": user,
        }

    async def can_afford_tier(self, user_id: str, tier: int) -> Dict[str, Any]:
        config = get_tier_config_or_raise(tier)
        user = await get_user_or_raise(self.db, user_id)

        price = Decimal(config.price)
        total = user.total_spendable
        max_available = await self._max_available_tier(user)
        tier_locked = tier > max_available
        has_running = await self._has_running_machine(user_id, tier)

        is_upgrade = tier > (user.max_tier_reached or 0)
        next_round = await self.get_next_reinvest_round(user, tier)
        current_round = max(next_round - 1, 1)

        return {
            "tier": tier,
            "can_afford": total >= price and not tier_locked and not has_running,
            "price": price,
            "fortune_balance": user.fortune_balance,
            "bonus_fortune": user.bonus_fortune,
            "referral_balance": user.referral_balance,
            "total_available": total,
            "shortfall": max(ZERO, price - total),
            "tier_locked": tier_locked,
            "max_available_tier": max_available,
            "has_active_machine": has_running,
            "is_upgrade": is_upgrade,
            "next_reinvest_round": next_round,
            "current_profit_reduction": to_decimal(get_reinvest_reduction(current_round)) * 100,
            "next_profit_reduction": to_decimal(get_reinvest_reduction(next_round)) * 100,
            "tier_unlock_required": tier_locked,
            "auto_unlock_threshold": FAME_AUTO_UNLOCK_THRESHOLDS.get(tier, 0),
            "tier_unlock_fee": to_decimal(calculate_tier_unlock_fee(config.price)),
            "total_fame_earned": user.total_fame_earned,
        }

    async def get_purchase_history(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Transaction]:
        return await self.transactions.get_user_transactions(
            user_id,
            type=TransactionType.MACHINE_PURCHASE,
            limit=limit,
            offset=offset,
        )
