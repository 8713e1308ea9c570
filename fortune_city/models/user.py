"""
User model: a Telegram player with in-game balances and progression.
"""

import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, ForeignKey, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money, ZERO

REFERRAL_CODE_ALPHABET = string.ascii_letters + string.digits + "_-"
REFERRAL_CODE_LENGTH = 8


class User(BaseModel, TimestampMixin):
    """Player account."""

    __tablename__ = "users"

    # Telegram identity
    telegram_id: Mapped[Optional[str]] = mapped_column(
        String(32),
        unique=True,
        index=True,
        comment="Telegram user id"
    )
    username: Mapped[Optional[str]] = mapped_column(String(64))
    first_name: Mapped[Optional[str]] = mapped_column(String(128))
    last_name: Mapped[Optional[str]] = mapped_column(String(128))
    avatar_url: Mapped[Optional[str]] = mapped_column(String(512))

    # Referrals
    referral_code: Mapped[str] = mapped_column(
        String(16),
        unique=True,
        index=True,
        comment="Code other users enter to become referrals"
    )
    referred_by_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        comment="Direct referrer (level 1)"
    )

    # Balances
    fortune_balance: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Main spendable/withdrawable balance"
    )
    bonus_fortune: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Non-withdrawable bonus balance, spent first on purchases"
    )
    referral_balance: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Earned referral bonuses"
    )

    # Fund source trackers
    total_fresh_deposits: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Fresh money currently in fortune balance"
    )
    total_profit_collected: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Machine profit currently in fortune balance"
    )

    # Progression
    max_tier_reached: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Highest tier ever purchased"
    )
    max_tier_unlocked: Mapped[int] = mapped_column(
        Integer,
        default=1,
        comment="Highest tier unlocked by Fame or fee"
    )
    current_tax_rate: Mapped[Decimal] = mapped_column(
        Money,
        default=Decimal("0.5"),
        comment="Withdrawal tax rate derived from max tier reached"
    )
    tax_discount: Mapped[Decimal] = mapped_column(
        Money,
        default=ZERO,
        comment="Permanent reduction of the withdrawal tax rate"
    )

    # Fame
    fame: Mapped[int] = mapped_column(Integer, default=0, comment="Spendable Fame")
    total_fame_earned: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Lifetime Fame, drives tier auto-unlock"
    )
    login_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_login_date: Mapped[Optional[str]] = mapped_column(
        String(10),
        comment="UTC date (YYYY-MM-DD) of the last daily login claim"
    )

    # Wheel
    free_spins_remaining: Mapped[int] = mapped_column(Integer, default=0)
    last_spin_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_spin_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Flags
    is_og: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Joined during prelaunch"
    )
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_users_referred_by", "referred_by_id"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, telegram_id={self.telegram_id})>"

    @staticmethod
    def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
        return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))

    @property
    def display_name(self) -> str:
        return self.username or self.first_name or "Anonymous"

    @property
    def total_spendable(self) -> Decimal:
        """Everything a machine purchase may draw from."""
        return (
            (self.bonus_fortune or ZERO)
            + (self.fortune_balance or ZERO)
            + (self.referral_balance or ZERO)
        )
