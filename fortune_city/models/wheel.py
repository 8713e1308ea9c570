"""
Prize wheel models: individual spins and the shared jackpot pool.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money, ZERO

JACKPOT_ID = "current"


class WheelSpin(BaseModel, TimestampMixin):
    """One wheel spin with its bet, outcome and pool accounting."""

    __tablename__ = "wheel_spins"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    bet_amount: Mapped[Decimal] = mapped_column(Money, comment="Unit bet")
    bet_multiplier: Mapped[int] = mapped_column(Integer, default=1)
    total_bet: Mapped[Decimal] = mapped_column(Money)
    total_payout: Mapped[Decimal] = mapped_column(Money)
    net_result: Mapped[Decimal] = mapped_column(Money)
    spin_results: Mapped[List[Dict[str, Any]]] = mapped_column(JSON)
    sector: Mapped[str] = mapped_column(String(16))
    jackpot_won: Mapped[bool] = mapped_column(Boolean, default=False)
    jackpot_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    burn_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    pool_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    free_spins_used: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("idx_wheel_spins_user_created", "user_id", "created_at"),
        Index("idx_wheel_spins_payout", "total_payout"),
    )


class WheelJackpot(BaseModel, TimestampMixin):
    """Singleton row (id "current") holding the jackpot pool."""

    __tablename__ = "wheel_jackpot"

    current_pool: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    pool_cap: Mapped[Decimal] = mapped_column(Money, default=Decimal("1000"))
    total_contributed: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_paid_out: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_burned: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    times_won: Mapped[int] = mapped_column(Integer, default=0)
    last_winner_id: Mapped[Optional[str]] = mapped_column(String(36))
    last_won_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    last_won_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
