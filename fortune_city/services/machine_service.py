"""
Machine accrual engine.

A machine pays out its total yield (price plus reduced profit) linearly
over its lifespan. Income drips into a coin box that holds at most
COIN_BOX_CAPACITY_HOURS of income; a full box stops accruing until it is
collected, so idle players lose income. Every collection is split into a
profit part and a principal part, profit first.
"""

import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tiers import (
    COIN_BOX_CAPACITY_HOURS,
    MACHINE_TIERS,
    calculate_early_sell_commission,
    calculate_machine_wear,
    get_reinvest_reduction,
    get_tier_config,
    get_tier_config_or_raise,
)
from fortune_city.core.exceptions import ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.machine import Machine, MachineStatus
from fortune_city.models.notification import NotificationType
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fame_service import FameService
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.lookups import get_machine_or_raise, get_user_or_raise
from fortune_city.services.notification_service import NotificationService
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
ONE = Decimal("1")


@dataclass
class IncomeState:
    """Coin box and payout snapshot of a machine at one moment."""
    accumulated: Decimal
    rate_per_second: Decimal
    coin_box_capacity: Decimal
    coin_box_current: Decimal
    is_full: bool
    seconds_until_full: int
    is_expired: bool
    can_collect: bool
    profit_paid_out: Decimal
    principal_paid_out: Decimal
    profit_remaining: Decimal
    principal_remaining: Decimal
    current_profit: Decimal
    current_principal: Decimal
    is_breakeven_reached: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_income(machine: Machine, now: Optional[datetime] = None) -> IncomeState:
    """
    Compute a machine's coin box without touching the database.

    Income accrues per whole second since last_calculated_at and stops at
    expiry. Frozen machines do not accrue. Sold machines report their
    stored values.
    """
    now = now or datetime.utcnow()

    rate = to_decimal(machine.rate_per_second)
    capacity = to_decimal(machine.coin_box_capacity)
    stored_box = to_decimal(machine.coin_box_current)
    accumulated = to_decimal(machine.accumulated_income)
    profit_paid_out = to_decimal(machine.profit_paid_out)
    principal_paid_out = to_decimal(machine.principal_paid_out)
    profit_amount = to_decimal(machine.profit_amount)
    purchase_price = to_decimal(machine.purchase_price)

    profit_remaining = max(ZERO, profit_amount - profit_paid_out)
    principal_remaining = max(ZERO, purchase_price - principal_paid_out)
    is_breakeven_reached = profit_paid_out >= profit_amount

    if machine.status in (MachineStatus.SOLD_EARLY.value, MachineStatus.SOLD_PAWNSHOP.value):
        return IncomeState(
            accumulated=accumulated,
            rate_per_second=rate,
            coin_box_capacity=capacity,
            coin_box_current=stored_box,
            is_full=True,
            seconds_until_full=0,
            is_expired=True,
            can_collect=stored_box > 0,
            profit_paid_out=profit_paid_out,
            principal_paid_out=principal_paid_out,
            profit_remaining=profit_remaining,
            principal_remaining=principal_remaining,
            current_profit=ZERO,
            current_principal=ZERO,
            is_breakeven_reached=is_breakeven_reached,
        )

    is_frozen = machine.status == MachineStatus.FROZEN.value
    is_expired = not is_frozen and (
        now >= machine.expires_at or machine.status == MachineStatus.EXPIRED.value
    )

    if is_frozen:
        elapsed_seconds = 0
    else:
        until = min(now, machine.expires_at)
        elapsed_seconds = max(0, math.floor((until - machine.last_calculated_at).total_seconds()))

    coin_box = stored_box + rate * elapsed_seconds
    is_full = coin_box >= capacity
    if is_full:
        coin_box = capacity

    if is_full or is_expired or is_frozen or rate <= 0:
        seconds_until_full = 0
    else:
        seconds_until_full = math.ceil((capacity - coin_box) / rate)

    current_profit = min(coin_box, profit_remaining)
    current_principal = max(ZERO, coin_box - current_profit)

    return IncomeState(
        accumulated=accumulated + coin_box,
        rate_per_second=rate,
        coin_box_capacity=capacity,
        coin_box_current=coin_box,
        is_full=is_full,
        seconds_until_full=seconds_until_full,
        is_expired=is_expired,
        can_collect=not is_frozen and (is_expired or is_full),
        profit_paid_out=profit_paid_out,
        principal_paid_out=principal_paid_out,
        profit_remaining=profit_remaining,
        principal_remaining=principal_remaining,
        current_profit=current_profit,
        current_principal=current_principal,
        is_breakeven_reached=is_breakeven_reached,
    )


def settle_coin_box(machine: Machine, state: IncomeState, now: datetime) -> None:
    """Persist the computed coin box so later accrual starts from now."""
    machine.coin_box_current = state.coin_box_current
    machine.last_calculated_at = now


def ensure_collectable(state: IncomeState) -> None:
    if not state.can_collect:
        raise ValidationError(
            f"CoinBox is not full yet. Wait {state.seconds_until_full} seconds.",
            {"seconds_until_full": state.seconds_until_full}
        )


def machine_economics(tier: int, reinvest_round: int, is_free: bool = False) -> Dict[str, Any]:
    """Price, yields, rate and coin box capacity of a new machine."""
    config = get_tier_config_or_raise(tier)
    reduction = ZERO if is_free else to_decimal(get_reinvest_reduction(reinvest_round))

    price = Decimal(config.price)
    total_yield = price * config.yield_percent / 100
    profit_amount = (total_yield - price) * (ONE - reduction)
    actual_total_yield = price + profit_amount

    rate_per_second = actual_total_yield / (config.lifespan_days * SECONDS_PER_DAY)

    return {
        "tier": config.tier,
        "purchase_price": ZERO if is_free else price,
        "total_yield": actual_total_yield,
        "profit_amount": profit_amount,
        "lifespan_days": config.lifespan_days,
        "rate_per_second": rate_per_second,
        "coin_box_capacity": rate_per_second * COIN_BOX_CAPACITY_HOURS * 3600,
        "reinvest_round": 1 if is_free else reinvest_round,
        "profit_reduction_rate": reduction,
        "is_free": is_free,
    }


class MachineService:
    """Machine lifecycle: creation, accrual, collection, early sale and expiry."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="machine_service")
        self.settings_service = SettingsService(db)
        self.transactions = TransactionService(db)
        self.fund_sources = FundSourceService(db)
        self.fame = FameService(db)

    async def _new_machine(self, user_id: str, economics: Dict[str, Any]) -> Machine:
        now = datetime.utcnow()
        is_prelaunch = await self.settings_service.is_prelaunch()

        machine = Machine(
            user_id=user_id,
            started_at=now,
            expires_at=now + timedelta(days=economics["lifespan_days"]),
            last_calculated_at=now,
            last_fame_calculated_at=now,
            accumulated_income=ZERO,
            coin_box_current=ZERO,
            profit_paid_out=ZERO,
            principal_paid_out=ZERO,
            overclock_multiplier=ZERO,
            fortune_gamble_level=0,
            speed_up_days=0,
            has_auto_collect=False,
            # Prelaunch machines wait frozen; end_prelaunch() restarts their clock
            status=MachineStatus.FROZEN.value if is_prelaunch else MachineStatus.ACTIVE.value,
            **economics,
        )
        self.db.add(machine)
        await self.db.flush()

        self.logger.info(
            "Machine created",
            machine_id=machine.id,
            user_id=user_id,
            tier=machine.tier,
            reinvest_round=machine.reinvest_round,
            is_free=machine.is_free,
            status=machine.status,
        )
        return machine

    async def create(self, user_id: str, tier: int, reinvest_round: int = 1) -> Machine:
        return await self._new_machine(user_id, machine_economics(tier, reinvest_round))

    async def create_free_machine(self, user_id: str, tier: int) -> Machine:
        """Milestone reward: no price, no reinvest penalty."""
        return await self._new_machine(user_id, machine_economics(tier, 1, is_free=True))

    async def get_machine(self, machine_id: str, user_id: Optional[str] = None) -> Machine:
        return await get_machine_or_raise(self.db, machine_id, user_id)

    async def get_user_machines(
        self,
        user_id: str,
        status: Optional[MachineStatus] = None
    ) -> List[Machine]:
        query = select(Machine).where(Machine.user_id == user_id)
        if status is not None:
            query = query.where(Machine.status == status.value)
        result = await self.db.execute(query.order_by(Machine.created_at.desc()))
        return list(result.scalars().all())

    async def calculate_income(self, machine_id: str) -> IncomeState:
        machine = await get_machine_or_raise(self.db, machine_id)
        return calculate_income(machine)

    async def collect_coins(
        self,
        machine_id: str,
        user_id: str,
        is_auto_collect: bool = False
    ) -> Dict[str, Any]:
        """
        Move a collectable coin box into the owner's fortune balance.

        An active overclock multiplies this collection and is consumed by
        it. Passive fame is awarded for active machines; manual collections
        earn the manual-collect bonus on top.
        """
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        user = await get_user_or_raise(self.db, user_id, for_update=True)

        now = datetime.utcnow()
        state = calculate_income(machine, now)
        ensure_collectable(state)

        base_amount = state.coin_box_current
        if base_amount <= 0:
            return {
                "collected": ZERO,
                "base_amount": ZERO,
                "machine": machine,
                "new_balance": user.fortune_balance,
                "fame_earned": 0,
                "overclock_applied": False,
                "overclock_multiplier": ZERO,
            }

        multiplier = to_decimal(machine.overclock_multiplier)
        has_overclock = multiplier > 0
        overclock_bonus = base_amount * (multiplier - 1) if has_overclock else ZERO
        collected = base_amount + overclock_bonus

        machine.coin_box_current = ZERO
        machine.last_calculated_at = now
        machine.accumulated_income = to_decimal(machine.accumulated_income) + collected
        machine.profit_paid_out = to_decimal(machine.profit_paid_out) + state.current_profit + overclock_bonus
        machine.principal_paid_out = to_decimal(machine.principal_paid_out) + state.current_principal
        machine.overclock_multiplier = ZERO
        machine.coin_box_full_notified_at = None

        user.fortune_balance = to_decimal(user.fortune_balance) + collected
        self.fund_sources.record_profit_collection(user, state.current_profit + overclock_bonus)

        await self.transactions.create(
            user_id=user_id,
            machine_id=machine_id,
            type=TransactionType.MACHINE_INCOME,
            amount=collected,
            description="Auto collect" if is_auto_collect else None,
        )

        fame_earned = 0
        if machine.status == MachineStatus.ACTIVE.value:
            fame_earned += await self.fame.earn_machine_passive_fame(user, machine, now)
        if not is_auto_collect:
            fame_earned += await self.fame.earn_manual_collect_fame(user, machine)

        await self.db.flush()

        self.logger.info(
            "Coins collected",
            machine_id=machine_id,
            user_id=user_id,
            collected=str(collected),
            overclock=str(multiplier) if has_overclock else None,
            auto=is_auto_collect,
        )

        return {
            "collected": collected,
            "base_amount": base_amount,
            "machine": machine,
            "new_balance": user.fortune_balance,
            "fame_earned": fame_earned,
            "overclock_applied": has_overclock,
            "overclock_multiplier": multiplier if has_overclock else ZERO,
        }

    @staticmethod
    def _early_sell_quote(machine: Machine, state: IncomeState) -> Dict[str, Decimal]:
        commission_rate = to_decimal(calculate_early_sell_commission(
            float(state.profit_paid_out),
            float(machine.profit_amount),
        ))
        principal_outside_box = max(ZERO, state.principal_remaining - state.current_principal)
        principal_returned = principal_outside_box * (ONE - commission_rate)

        return {
            "coin_box": state.coin_box_current,
            "profit_in_coin_box": state.current_profit,
            "principal_in_coin_box": state.current_principal,
            "principal_returned": principal_returned,
            "commission_rate": commission_rate,
            "commission": principal_outside_box * commission_rate,
            "total_returned": state.coin_box_current + principal_returned,
        }

    async def get_sell_early_info(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id)
        quote = self._early_sell_quote(machine, calculate_income(machine))
        quote["can_sell"] = machine.status == MachineStatus.ACTIVE.value
        quote["wear_percent"] = calculate_machine_wear(machine.started_at, machine.expires_at)
        quote["profit_progress"] = (
            to_decimal(machine.profit_paid_out) / to_decimal(machine.profit_amount) * 100
            if to_decimal(machine.profit_amount) > 0 else Decimal(100)
        )
        return quote

    async def sell_machine_early(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        """
        Close an active machine before expiry.

        The coin box is paid in full. The principal not yet paid out comes
        back minus a commission that grows with the profit progress.
        """
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        if machine.status != MachineStatus.ACTIVE.value:
            raise ValidationError("Can only sell active machines", {"status": machine.status})

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        now = datetime.utcnow()
        quote = self._early_sell_quote(machine, calculate_income(machine, now))

        machine.status = MachineStatus.SOLD_EARLY.value
        machine.coin_box_current = ZERO
        machine.last_calculated_at = now
        machine.profit_paid_out = to_decimal(machine.profit_paid_out) + quote["profit_in_coin_box"]
        machine.principal_paid_out = (
            to_decimal(machine.principal_paid_out)
            + quote["principal_in_coin_box"]
            + quote["principal_returned"]
        )
        machine.has_auto_collect = False

        user.fortune_balance = to_decimal(user.fortune_balance) + quote["total_returned"]
        self.fund_sources.record_profit_collection(user, quote["profit_in_coin_box"])

        await self.transactions.create(
            user_id=user_id,
            machine_id=machine_id,
            type=TransactionType.MACHINE_EARLY_SELL,
            amount=quote["total_returned"],
            tax_amount=quote["commission"],
            tax_rate=quote["commission_rate"],
        )

        self.logger.info(
            "Machine sold early",
            machine_id=machine_id,
            user_id=user_id,
            total_returned=str(quote["total_returned"]),
            commission_rate=str(quote["commission_rate"]),
        )

        return {
            "machine": machine,
            "profit_returned": quote["profit_in_coin_box"],
            "principal_returned": quote["principal_in_coin_box"] + quote["principal_returned"],
            "total_returned": quote["total_returned"],
            "commission": quote["commission"],
            "commission_rate": quote["commission_rate"],
            "new_balance": user.fortune_balance,
        }

    async def check_and_expire_machines(self) -> List[Dict[str, Any]]:
        """Mark active machines past their expiry as expired and tell their owners."""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(Machine).where(
                Machine.status == MachineStatus.ACTIVE.value,
                Machine.expires_at <= now,
            )
        )
        machines = list(result.scalars().all())
        if not machines:
            return []

        notifications = NotificationService(self.db)
        expired = []
        for machine in machines:
            machine.status = MachineStatus.EXPIRED.value
            tier = get_tier_config(machine.tier)
            await notifications.notify(
                machine.user_id,
                NotificationType.MACHINE_EXPIRED,
                "Machine expired",
                f"Your {tier.name if tier else 'machine'} finished its cycle. "
                "Collect the remaining coins.",
                {"machine_id": machine.id, "tier": machine.tier},
            )
            expired.append({
                "id": machine.id,
                "user_id": machine.user_id,
                "tier": machine.tier,
                "accumulated_income": machine.accumulated_income,
            })

        await self.db.flush()
        self.logger.info("Machines expired", count=len(expired))
        return expired

    async def notify_full_coin_boxes(self) -> int:
        """Notify once per fill about active machines whose coin box is full."""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(Machine).where(
                Machine.status == MachineStatus.ACTIVE.value,
                Machine.has_auto_collect.is_(False),
                Machine.coin_box_full_notified_at.is_(None),
            )
        )

        notifications = NotificationService(self.db)
        notified = 0
        for machine in result.scalars().all():
            if not calculate_income(machine, now).is_full:
                continue
            machine.coin_box_full_notified_at = now
            await notifications.notify(
                machine.user_id,
                NotificationType.COIN_BOX_FULL,
                "Coin box is full",
                "Your machine stopped earning. Collect the coins to keep it running.",
                {"machine_id": machine.id, "tier": machine.tier},
            )
            notified += 1

        await self.db.flush()
        return notified

    @staticmethod
    def get_tiers() -> List[Dict[str, Any]]:
        return [tier.to_dict() for tier in MACHINE_TIERS]

    @staticmethod
    def get_tier(tier: int) -> Optional[Dict[str, Any]]:
        config = get_tier_config(tier)
        return config.to_dict() if config else None
