"""
Machine models: income-generating slot machines and the origin of the
money that bought them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, ForeignKey, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money, Rate, ZERO


class MachineStatus(str, Enum):
    """Machine lifecycle status."""
    ACTIVE = "active"
    FROZEN = "frozen"  # bought during prelaunch, not accruing yet
    EXPIRED = "expired"
    SOLD_EARLY = "sold_early"
    SOLD_PAWNSHOP = "sold_pawnshop"


# Statuses of a machine whose cycle is over
COMPLETED_STATUSES = (
    MachineStatus.EXPIRED.value,
    MachineStatus.SOLD_EARLY.value,
    MachineStatus.SOLD_PAWNSHOP.value,
)


class Machine(BaseModel, TimestampMixin):
    """A purchased machine accruing income into its coin box."""

    __tablename__ = "machines"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        comment="Owner"
    )

    tier: Mapped[int] = mapped_column(Integer, comment="Machine tier (1-10)")

    # Economics
    purchase_price: Mapped[Decimal] = mapped_column(
        Money,
        comment="Price paid (0 for free machines)"
    )
    total_yield: Mapped[Decimal] = mapped_column(
        Money,
        comment="Principal plus (reduced) profit paid over the lifespan"
    )
    profit_amount: Mapped[Decimal] = mapped_column(
        Money,
        comment="Profit part of total yield after reinvest reduction"
    )
    lifespan_days: Mapped[int] = mapped_column(Integer)
    reinvest_round: Mapped[int] = mapped_column(Integer, default=1)
    profit_reduction_rate: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    is_free: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    rate_per_second: Mapped[Decimal] = mapped_column(Rate)

    # Coin box
    accumulated_income: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    coin_box_capacity: Mapped[Decimal] = mapped_column(Money)
    coin_box_current: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    last_calculated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        comment="Coin box was last settled at this time"
    )

    # Payout tracking (profit is paid out before principal)
    profit_paid_out: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    principal_paid_out: Mapped[Decimal] = mapped_column(Money, default=ZERO)

    status: Mapped[str] = mapped_column(
        String(20),
        default=MachineStatus.ACTIVE.value,
        comment="active, frozen, expired, sold_early, sold_pawnshop"
    )

    # Add-ons
    overclock_multiplier: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Boost applied to the next collection, 0 when none"
    )
    fortune_gamble_level: Mapped[int] = mapped_column(Integer, default=0)
    speed_up_days: Mapped[int] = mapped_column(Integer, default=0)
    has_auto_collect: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_collect_purchased_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Fame and notification bookkeeping
    last_fame_calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    coin_box_full_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_machines_user_status", "user_id", "status"),
        Index("idx_machines_status_expires", "status", "expires_at"),
        Index("idx_machines_user_tier", "user_id", "tier"),
    )

    def __repr__(self) -> str:
        return f"<Machine(id={self.id}, tier={self.tier}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status == MachineStatus.ACTIVE.value

    @property
    def profit_remaining(self) -> Decimal:
        return max(ZERO, self.profit_amount - self.profit_paid_out)

    @property
    def principal_remaining(self) -> Decimal:
        return max(ZERO, self.purchase_price - self.principal_paid_out)


class FundSourceType(str, Enum):
    FRESH = "fresh"
    PROFIT = "profit"
    MIXED = "mixed"


class MachineFundSource(BaseModel, TimestampMixin):
    """How much of a machine's price came from fresh deposits vs. reinvested profit."""

    __tablename__ = "machine_fund_sources"

    machine_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("machines.id", ondelete="CASCADE"),
        unique=True,
    )
    fresh_deposit_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    profit_reinvest_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    source_type: Mapped[str] = mapped_column(String(10))

    @property
    def total(self) -> Decimal:
        return self.fresh_deposit_amount + self.profit_reinvest_amount
