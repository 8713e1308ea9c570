"""
Fund source tracking.

Every user carries two trackers alongside fortune_balance: how much of the
balance is fresh deposited money (never taxed on withdrawal) and how much
is collected machine profit (taxed at the user's rate). Purchases record
which share of the price came from where so the split survives a resale.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.models.base import ZERO
from fortune_city.models.machine import MachineFundSource, FundSourceType
from fortune_city.models.user import User
from fortune_city.utils.money import to_decimal, clamp


logger = structlog.get_logger(__name__)

Amount = Union[Decimal, float, int]

ONE = Decimal("1")


@dataclass
class SourceBreakdown:
    fresh_deposit: Decimal
    profit_derived: Decimal
    total_amount: Decimal

    @property
    def source_type(self) -> FundSourceType:
        if self.profit_derived <= 0:
            return FundSourceType.FRESH
        if self.fresh_deposit <= 0:
            return FundSourceType.PROFIT
        return FundSourceType.MIXED


class FundSourceService:
    """Maintains fresh/profit trackers and per-machine fund sources."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="fund_source_service")

    @staticmethod
    def calculate_source_breakdown(
        fortune_balance: Amount,
        total_fresh_deposits: Amount,
        amount: Amount
    ) -> SourceBreakdown:
        """
        Split an amount spent from fortune_balance into fresh and profit parts.

        The fresh share is total_fresh_deposits / fortune_balance clamped to
        [0, 1]; the rest of the amount counts as profit.
        """
        balance = to_decimal(fortune_balance)
        fresh = to_decimal(total_fresh_deposits)
        amount = to_decimal(amount)

        if balance <= 0 or amount <= 0:
            return SourceBreakdown(ZERO, ZERO, amount)

        fresh_ratio = clamp(fresh / balance, ZERO, ONE)
        fresh_portion = amount * fresh_ratio
        return SourceBreakdown(fresh_portion, amount - fresh_portion, amount)

    async def create_machine_fund_source(
        self,
        machine_id: str,
        breakdown: SourceBreakdown
    ) -> MachineFundSource:
        fund_source = MachineFundSource(
            machine_id=machine_id,
            fresh_deposit_amount=breakdown.fresh_deposit,
            profit_reinvest_amount=breakdown.profit_derived,
            source_type=breakdown.source_type.value,
        )
        self.db.add(fund_source)
        await self.db.flush()
        return fund_source

    async def get_by_machine_id(self, machine_id: str) -> MachineFundSource:
        result = await self.db.execute(
            select(MachineFundSource).where(MachineFundSource.machine_id == machine_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def record_profit_collection(user: User, amount: Amount) -> None:
        amount = to_decimal(amount)
        if amount <= 0:
            return
        user.total_profit_collected = to_decimal(user.total_profit_collected) + amount

    @staticmethod
    def record_fresh_deposit(user: User, amount: Amount) -> None:
        amount = to_decimal(amount)
        if amount <= 0:
            return
        user.total_fresh_deposits = to_decimal(user.total_fresh_deposits) + amount

    @staticmethod
    def record_spend(user: User, breakdown: SourceBreakdown) -> None:
        """Take a purchase out of the trackers, never below zero."""
        user.total_fresh_deposits = max(
            ZERO, to_decimal(user.total_fresh_deposits) - breakdown.fresh_deposit
        )
        user.total_profit_collected = max(
            ZERO, to_decimal(user.total_profit_collected) - breakdown.profit_derived
        )

    @staticmethod
    def record_withdrawal(user: User, amount: Amount) -> Tuple[Decimal, Decimal]:
        """
        Deduct a withdrawal from the trackers, profit first.

        Returns:
            (from_fresh, from_profit)
        """
        amount = to_decimal(amount)
        fresh_available = to_decimal(user.total_fresh_deposits)
        profit_available = to_decimal(user.total_profit_collected)

        from_profit = min(amount, profit_available)
        from_fresh = min(amount - from_profit, fresh_available)

        user.total_profit_collected = profit_available - from_profit
        user.total_fresh_deposits = fresh_available - from_fresh
        return from_fresh, from_profit

    @staticmethod
    def restore_withdrawal(user: User, from_fresh: Amount, from_profit: Amount) -> None:
        """Undo record_withdrawal() for a failed or cancelled payout."""
        user.total_fresh_deposits = to_decimal(user.total_fresh_deposits) + to_decimal(from_fresh)
        user.total_profit_collected = to_decimal(user.total_profit_collected) + to_decimal(from_profit)

    async def propagate_machine_fund_source_to_balance(
        self,
        user: User,
        machine_id: str,
        payout: Amount
    ) -> Tuple[Decimal, Decimal]:
        """
        Credit a sale payout to the trackers in the machine's original proportion.

        Machines without a recorded source (or a zero one) count as profit.

        Returns:
            (fresh_portion, profit_portion)
        """
        payout = to_decimal(payout)
        fund_source = await self.get_by_machine_id(machine_id)

        if fund_source is None or fund_source.total <= 0:
            self.record_profit_collection(user, payout)
            return ZERO, payout

        fresh_ratio = to_decimal(fund_source.fresh_deposit_amount) / to_decimal(fund_source.total)
        fresh_portion = payout * fresh_ratio
        profit_portion = payout - fresh_portion

        self.record_fresh_deposit(user, fresh_portion)
        self.record_profit_collection(user, profit_portion)
        return fresh_portion, profit_portion
