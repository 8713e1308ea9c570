"""
Referral schemas.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class SetReferrerRequest(BaseModel):
    """Attach a referrer after sign-up."""
    referral_code: str = Field(min_length=1, max_length=16)


class WithdrawReferralRequest(BaseModel):
    amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Amount to move to the fortune balance; everything when omitted"
    )
