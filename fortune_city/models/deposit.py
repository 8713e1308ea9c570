"""
Deposit models: incoming crypto transfers and the wallets users connected.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, BigInteger, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, Money


class DepositStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CREDITED = "credited"
    FAILED = "failed"


class DepositMethod(str, Enum):
    WALLET_CONNECT = "wallet_connect"
    DEPOSIT_ADDRESS = "deposit_address"


class Deposit(BaseModel, TimestampMixin):
    """A crypto deposit credited to a user's fortune balance."""

    __tablename__ = "deposits"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    method: Mapped[str] = mapped_column(String(20))
    chain: Mapped[str] = mapped_column(String(16), default="solana")
    currency: Mapped[str] = mapped_column(String(16), comment="SOL, USDT_SOL or FORTUNE")
    amount: Mapped[Decimal] = mapped_column(Money, comment="Amount in native units")
    amount_usd: Mapped[Optional[Decimal]] = mapped_column(Money)
    rate_to_usd: Mapped[Optional[Decimal]] = mapped_column(Money)
    memo: Mapped[Optional[str]] = mapped_column(String(64))
    tx_signature: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        comment="On-chain signature, pending_<memo> until the client confirms"
    )
    slot: Mapped[Optional[int]] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(16), default=DepositStatus.PENDING.value)
    error_message: Mapped[Optional[str]] = mapped_column(String(512))
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    credited_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_deposits_user_status", "user_id", "status"),
    )


class WalletConnection(BaseModel, TimestampMixin):
    """A wallet address a user connected from the Mini App."""

    __tablename__ = "wallet_connections"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
    )
    chain: Mapped[str] = mapped_column(String(16), default="solana")
    wallet_address: Mapped[str] = mapped_column(String(64))
    connected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "chain", name="uq_wallet_connection_user_chain"),
        Index("idx_wallet_connections_address", "wallet_address", "chain"),
    )
