"""
Ledger service: writes and reads balance-affecting transactions.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.models.base import ZERO
from fortune_city.models.transaction import (
    Transaction, TransactionType, TransactionStatus
)
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)

Amount = Union[Decimal, float, int]


class TransactionService:
    """Creates ledger entries inside the caller's unit of work."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="transaction_service")

    async def create(
        self,
        user_id: str,
        type: TransactionType,
        amount: Amount,
        net_amount: Optional[Amount] = None,
        machine_id: Optional[str] = None,
        currency: str = "FORTUNE",
        tax_amount: Amount = ZERO,
        tax_rate: Amount = ZERO,
        tx_signature: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        description: Optional[str] = None,
    ) -> Transaction:
        amount = to_decimal(amount)
        transaction = Transaction(
            user_id=user_id,
            machine_id=machine_id,
            type=type.value,
            amount=amount,
            currency=currency,
            tax_amount=to_decimal(tax_amount),
            tax_rate=to_decimal(tax_rate),
            net_amount=amount if net_amount is None else to_decimal(net_amount),
            tx_signature=tx_signature,
            status=status.value,
            description=description,
        )
        self.db.add(transaction)
        await self.db.flush()

        self.logger.debug(
            "Transaction recorded",
            user_id=user_id,
            type=type.value,
            amount=str(amount),
            status=status.value,
        )
        return transaction

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        return await self.db.get(Transaction, transaction_id)

    async def update_status(
        self,
        transaction: Transaction,
        status: TransactionStatus,
        tx_signature: Optional[str] = None
    ) -> Transaction:
        transaction.status = status.value
        if tx_signature:
            transaction.tx_signature = tx_signature
        await self.db.flush()
        return transaction

    async def get_user_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Transaction]:
        query = select(Transaction).where(Transaction.user_id == user_id)
        if type is not None:
            query = query.where(Transaction.type == type.value)
        if status is not None:
            query = query.where(Transaction.status == status.value)

        query = query.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_user_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None
    ) -> int:
        query = select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
        if type is not None:
            query = query.where(Transaction.type == type.value)
        return (await self.db.execute(query)).scalar_one()

    async def get_stats(self, user_id: str) -> Dict[str, Any]:
        """Completed totals per transaction type for a user."""
        result = await self.db.execute(
            select(
                Transaction.type,
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.net_amount), 0),
            )
            .where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
            .group_by(Transaction.type)
        )
        by_type = {row[0]: (row[1], to_decimal(row[2])) for row in result.all()}

        def total(type_: TransactionType) -> Decimal:
            return by_type.get(type_.value, (0, ZERO))[1]

        return {
            "total_deposits": total(TransactionType.DEPOSIT),
            "total_withdrawals": total(TransactionType.WITHDRAWAL),
            "total_machines_purchased": by_type.get(
                TransactionType.MACHINE_PURCHASE.value, (0, ZERO)
            )[0],
            "total_earnings": (
                total(TransactionType.MACHINE_INCOME)
                + total(TransactionType.MACHINE_INCOME_RISKY)
            ),
            "total_wheel_prizes": total(TransactionType.WHEEL_PRIZE),
        }
