"""
Ledger of balance-affecting operations.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money, ZERO


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    MACHINE_PURCHASE = "machine_purchase"
    MACHINE_INCOME = "machine_income"
    MACHINE_INCOME_RISKY = "machine_income_risky"
    MACHINE_EARLY_SELL = "machine_early_sell"
    MACHINE_PAWNSHOP_SELL = "machine_pawnshop_sell"
    REFERRAL_BONUS = "referral_bonus"
    REFERRAL_WITHDRAWAL = "referral_withdrawal"
    WHEEL_PRIZE = "wheel_prize"
    COLLECTOR_PURCHASE = "collector_purchase"
    COLLECTOR_SALARY = "collector_salary"
    OVERCLOCK_PURCHASE = "overclock_purchase"
    GAMBLE_UPGRADE = "gamble_upgrade"
    SPEED_UP = "speed_up"
    TIER_UNLOCK = "tier_unlock"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Transaction(BaseModel, TimestampMixin):
    """A single ledger entry for a user."""

    __tablename__ = "transactions"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    machine_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("machines.id", ondelete="SET NULL"),
    )
    type: Mapped[str] = mapped_column(String(32), comment="TransactionType value")
    amount: Mapped[Decimal] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(16), default="FORTUNE")
    tax_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    tax_rate: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    net_amount: Mapped[Decimal] = mapped_column(Money)
    tx_signature: Mapped[Optional[str]] = mapped_column(String(128))
    status: Mapped[str] = mapped_column(String(16), default=TransactionStatus.COMPLETED.value)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_transactions_user_created", "user_id", "created_at"),
        Index("idx_transactions_user_type", "user_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, type={self.type}, amount={self.amount})>"
