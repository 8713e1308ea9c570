"""
Deposit schemas.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from fortune_city.constants.tokens import CURRENCY_USDT_SOL


class ConnectWalletRequest(BaseModel):
    wallet_address: str = Field(min_length=32, max_length=44)


class InitiateDepositRequest(BaseModel):
    """Start a wallet-connect deposit."""
    currency: str = Field(default=CURRENCY_USDT_SOL, description="SOL, USDT_SOL or FORTUNE")
    amount: Decimal = Field(gt=0)


class ConfirmDepositRequest(BaseModel):
    deposit_id: str
    signature: str = Field(min_length=64, max_length=128)
