"""
Referral models: bonuses paid up the referral chain and claimed milestones.
Supports a 3-level referral system with 5%, 3%, 1% bonus rates.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class ReferralBonus(BaseModel, TimestampMixin):
    """Bonus credited to a referrer when someone below them buys with fresh money."""

    __tablename__ = "referral_bonuses"

    referrer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        comment="User receiving the bonus"
    )
    source_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        comment="User whose purchase generated the bonus"
    )
    machine_id: Mapped[Optional[str]] = mapped_column(String(36))
    level: Mapped[int] = mapped_column(Integer, comment="1 = direct referral")
    rate: Mapped[Decimal] = mapped_column(Money)
    fresh_amount: Mapped[Decimal] = mapped_column(Money, comment="Fresh money the bonus was computed from")
    amount: Mapped[Decimal] = mapped_column(Money)

    __table_args__ = (
        Index("idx_referral_bonuses_referrer", "referrer_id", "level"),
    )


class ReferralMilestone(BaseModel, TimestampMixin):
    """A claimed referral milestone reward."""

    __tablename__ = "referral_milestones"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    milestone: Mapped[str] = mapped_column(String(32))
    reward: Mapped[str] = mapped_column(String(32))

    __table_args__ = (
        UniqueConstraint("user_id", "milestone", name="uq_referral_milestone_user"),
    )
