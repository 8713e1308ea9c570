"""
Database models for Fortune City backend.
"""

from .base import Base, BaseModel, TimestampMixin
from .user import User
from .machine import (
    Machine, MachineStatus, MachineFundSource, FundSourceType, COMPLETED_STATUSES
)
from .transaction import Transaction, TransactionType, TransactionStatus
from .fame import FameTransaction, FameSource
from .wheel import WheelSpin, WheelJackpot, JACKPOT_ID
from .referral import ReferralBonus, ReferralMilestone
from .deposit import Deposit, DepositStatus, DepositMethod, WalletConnection
from .withdrawal import Withdrawal, WithdrawalStatus, WithdrawalMethod
from .notification import Notification, NotificationType
from .settings import SystemSettings, DEFAULT_SETTINGS_ID

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "User",
    "Machine",
    "MachineStatus",
    "MachineFundSource",
    "FundSourceType",
    "COMPLETED_STATUSES",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "FameTransaction",
    "FameSource",
    "WheelSpin",
    "WheelJackpot",
    "JACKPOT_ID",
    "ReferralBonus",
    "ReferralMilestone",
    "Deposit",
    "DepositStatus",
    "DepositMethod",
    "WalletConnection",
    "Withdrawal",
    "WithdrawalStatus",
    "WithdrawalMethod",
    "Notification",
    "NotificationType",
    "SystemSettings",
    "DEFAULT_SETTINGS_ID",
]
