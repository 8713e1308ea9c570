"""
In-app notifications.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, ForeignKey, Index, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class NotificationType(str, Enum):
    MACHINE_EXPIRED = "machine_expired"
    COIN_BOX_FULL = "coin_box_full"
    REFERRAL_JOINED = "referral_joined"
    DEPOSIT_CREDITED = "deposit_credited"
    WHEEL_JACKPOT_WON = "wheel_jackpot_won"
    WITHDRAWAL_COMPLETED = "withdrawal_completed"


class Notification(BaseModel, TimestampMixin):
    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    type: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(128))
    message: Mapped[str] = mapped_column(Text)
    data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sent_to_telegram_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "read_at"),
    )
