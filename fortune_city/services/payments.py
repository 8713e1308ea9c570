"""Paying for machine add-ons with FORTUNE or Fame."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from fortune_city.core.exceptions import InsufficientFundsError
from fortune_city.models.fame import FameSource
from fortune_city.models.transaction import TransactionType
from fortune_city.models.user import User
from fortune_city.services.fame_service import FameService
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


class PaymentMethod(str, Enum):
    FORTUNE = "fortune"
    FAME = "fame"


def deduct_fortune(user: User, amount: Decimal) -> None:
    """Take an amount from fortune_balance; the profit tracker absorbs it first."""
    amount = to_decimal(amount)
    balance = to_decimal(user.fortune_balance)
    if balance < amount:
        raise InsufficientFundsError(amount, balance)

    user.fortune_balance = balance - amount
    profit = to_decimal(user.total_profit_collected)
    from_profit = min(profit, amount)
    user.total_profit_collected = profit - from_profit
    fresh = to_decimal(user.total_fresh_deposits)
    user.total_fresh_deposits = max(fresh - (amount - from_profit), Decimal(0))


async def charge(
    fame: FameService,
    transactions: TransactionService,
    user: User,
    method: PaymentMethod,
    fortune_price: Decimal,
    fame_price: int,
    transaction_type: TransactionType,
    fame_source: FameSource,
    description: str,
    machine_id: Optional[str] = None,
) -> Decimal:
    """
    Charge a user in the chosen currency.

    Returns:
        The amount charged in that currency
    """
    if method == PaymentMethod.FAME:
        await fame.spend_fame(user, fame_price, fame_source, description=description, machine_id=machine_id)
        return Decimal(fame_price)

    deduct_fortune(user, fortune_price)
    await transactions.create(
        user_id=user.id,
        machine_id=machine_id,
        type=transaction_type,
        amount=fortune_price,
        description=description,
    )
    return to_decimal(fortune_price)
