"""
Withdrawal schemas.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class WithdrawalPreviewRequest(BaseModel):
    amount: Decimal = Field(gt=0, description="FORTUNE amount to withdraw")


class WithdrawalRequest(WithdrawalPreviewRequest):
    """Amount and the Solana wallet that receives USDT."""
    wallet_address: str = Field(min_length=32, max_length=44)


class ConfirmWithdrawalRequest(BaseModel):
    signature: str = Field(min_length=64, max_length=128, description="Transaction signature")
