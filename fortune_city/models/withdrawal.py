"""
Withdrawal model: USDT payouts on Solana.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money, ZERO


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WithdrawalMethod(str, Enum):
    WALLET_CONNECT = "wallet_connect"  # user co-signs and pays the SOL fee
    MANUAL_ADDRESS = "manual_address"  # payout wallet sends directly


class Withdrawal(BaseModel, TimestampMixin):
    """A requested payout with its tax split."""

    __tablename__ = "withdrawals"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    method: Mapped[str] = mapped_column(String(20))
    chain: Mapped[str] = mapped_column(String(16), default="solana")
    currency: Mapped[str] = mapped_column(String(16), default="USDT_SOL")
    wallet_address: Mapped[str] = mapped_column(String(64))

    requested_amount: Mapped[Decimal] = mapped_column(Money)
    from_fresh_deposit: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    from_profit: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    tax_rate: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    net_amount: Mapped[Decimal] = mapped_column(Money)
    usdt_amount: Mapped[Decimal] = mapped_column(Money)
    fee_sol_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    # fresh/profit tracker amounts taken by the reservation, given back on release
    tracker_fresh_deducted: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    tracker_profit_deducted: Mapped[Decimal] = mapped_column(Money, default=ZERO)

    tx_signature: Mapped[Optional[str]] = mapped_column(String(128))
    blockhash: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="Recent blockhash of the wallet-connect transaction; it can land until this expires"
    )
    status: Mapped[str] = mapped_column(String(16), default=WithdrawalStatus.PENDING.value)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("transactions.id", ondelete="SET NULL"),
        comment="Ledger entry mirroring this withdrawal"
    )

    __table_args__ = (
        Index("idx_withdrawals_user_created", "user_id", "created_at"),
        Index("idx_withdrawals_status", "status"),
    )
