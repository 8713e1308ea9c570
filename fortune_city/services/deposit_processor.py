"""
Crediting confirmed deposits.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.core.exceptions import ValidationError
from fortune_city.models.deposit import Deposit, DepositStatus
from fortune_city.models.notification import NotificationType
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.notification_service import NotificationService
from fortune_city.services.price_oracle import PriceOracle, get_price_oracle
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


class DepositProcessor:
    """Turns a confirmed on-chain deposit into fresh FORTUNE balance."""

    def __init__(self, db: AsyncSession, price_oracle: Optional[PriceOracle] = None):
        self.db = db
        self.price_oracle = price_oracle or get_price_oracle()
        self.logger = logger.bind(service="deposit_processor")
        self.transactions = TransactionService(db)

    async def process_confirmed(self, deposit: Deposit, rate: Optional[Decimal] = None) -> Deposit:
        if deposit.status == DepositStatus.CREDITED.value:
            raise ValidationError("Deposit already credited", {"deposit_id": deposit.id})

        if rate is None:
            rate = await self.price_oracle.get_price_usd(deposit.currency)
        amount_usd = to_decimal(deposit.amount) * rate

        user = await get_user_or_raise(self.db, deposit.user_id, for_update=True)
        user.fortune_balance = to_decimal(user.fortune_balance) + amount_usd
        FundSourceService.record_fresh_deposit(user, amount_usd)

        now = datetime.utcnow()
        deposit.rate_to_usd = rate
        deposit.amount_usd = amount_usd
        deposit.status = DepositStatus.CREDITED.value
        deposit.confirmed_at = deposit.confirmed_at or now
        deposit.credited_at = now

        await self.transactions.create(
            user_id=user.id,
            type=TransactionType.DEPOSIT,
            amount=amount_usd,
            currency="FORTUNE",
            tx_signature=deposit.tx_signature,
            description=f"{deposit.amount} {deposit.currency} @ ${rate}",
        )
        await self.db.flush()

        await NotificationService(self.db).notify(
            user.id,
            NotificationType.DEPOSIT_CREDITED,
            "Deposit credited",
            f"{deposit.amount} {deposit.currency} credited as ${amount_usd:.2f}.",
            {"deposit_id": deposit.id, "amount_usd": float(amount_usd)},
        )

        self.logger.info(
            "Deposit credited",
            deposit_id=deposit.id,
            user_id=user.id,
            currency=deposit.currency,
            amount=str(deposit.amount),
            amount_usd=str(amount_usd),
        )
        return deposit
