"""
Fame transaction log.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class FameSource(str, Enum):
    DAILY_LOGIN = "daily_login"
    MACHINE_PASSIVE = "machine_passive"
    MANUAL_COLLECT = "manual_collect"
    MACHINE_PURCHASE = "machine_purchase"
    TIER_UNLOCK = "tier_unlock"
    SPEED_UP = "speed_up"
    OVERCLOCK = "overclock"
    COLLECTOR_HIRE = "collector_hire"


class FameTransaction(BaseModel, TimestampMixin):
    """Fame earned (positive amount) or spent (negative amount)."""

    __tablename__ = "fame_transactions"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    amount: Mapped[int] = mapped_column(Integer)
    source: Mapped[str] = mapped_column(
        String(32),
        comment="daily_login, machine_passive, manual_collect, machine_purchase, speed_up, ..."
    )
    machine_id: Mapped[Optional[str]] = mapped_column(String(36))
    description: Mapped[Optional[str]] = mapped_column(Text)
    balance_after: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        Index("idx_fame_transactions_user_created", "user_id", "created_at"),
    )
