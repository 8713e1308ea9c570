"""
Treasury settlement: USDT withdrawals.

Tax is charged only on the part of a withdrawal that counts as collected
profit; fresh deposits leave untaxed. Balances are deducted when a
withdrawal is prepared and restored if it fails or is cancelled, so a
pending withdrawal can never be spent twice.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.core.exceptions import (
    InsufficientFundsError,
    SolanaError,
    ValidationError,
    WithdrawalNotFoundError,
)
from fortune_city.models.base import ZERO
from fortune_city.models.notification import NotificationType
from fortune_city.models.transaction import TransactionStatus, TransactionType
from fortune_city.models.user import User
from fortune_city.models.withdrawal import Withdrawal, WithdrawalMethod, WithdrawalStatus
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.notification_service import NotificationService
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.solana_service import SolanaService, get_solana_service
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal
from fortune_city.utils.validation import validate_signature, validate_wallet_address


logger = structlog.get_logger(__name__)


def effective_tax_rate(user: User) -> Decimal:
    return max(ZERO, to_decimal(user.current_tax_rate) - to_decimal(user.tax_discount))


class WithdrawalService:
    """Preview, prepare, confirm and cancel USDT withdrawals."""

    def __init__(self, db: AsyncSession, solana: Optional[SolanaService] = None):
        self.db = db
        self.solana = solana or get_solana_service()
        self.logger = logger.bind(service="withdrawal_service")
        self.settings_service = SettingsService(db)
        self.transactions = TransactionService(db)
        self.fund_sources = FundSourceService(db)

    async def _quote(self, user: User, amount: Decimal) -> Dict[str, Any]:
        current = await self.settings_service.get_settings()

        if amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": float(amount)})
        if amount < to_decimal(current.min_withdrawal_amount):
            raise ValidationError(
                f"Minimum withdrawal is ${current.min_withdrawal_amount}",
                {"min_withdrawal_amount": float(current.min_withdrawal_amount)}
            )
        if amount > to_decimal(current.max_withdrawal_amount):
            raise ValidationError(
                f"Maximum withdrawal is ${current.max_withdrawal_amount}",
                {"max_withdrawal_amount": float(current.max_withdrawal_amount)}
            )
        if amount > to_decimal(user.fortune_balance):
            raise InsufficientFundsError(amount, user.fortune_balance)

        breakdown = self.fund_sources.calculate_source_breakdown(
            user.fortune_balance, user.total_fresh_deposits, amount
        )
        tax_rate = effective_tax_rate(user)
        tax_amount = breakdown.profit_derived * tax_rate
        net_amount = amount - tax_amount

        return {
            "requested_amount": amount,
            "from_fresh_deposit": breakdown.fresh_deposit,
            "from_profit": breakdown.profit_derived,
            "tax_rate": tax_rate,
            "tax_amount": tax_amount,
            "net_amount": net_amount,
            "usdt_amount": net_amount,
            "fee_sol": to_decimal(current.wallet_connect_fee_sol),
        }

    async def preview(self, user_id: str, amount: Decimal) -> Dict[str, Any]:
        user = await get_user_or_raise(self.db, user_id)
        return await self._quote(user, to_decimal(amount))

    async def _ensure_payout_liquidity(self, usdt_amount: Decimal) -> None:
        available = await self.solana.get_usdt_balance()
        if available < usdt_amount:
            self.logger.error(
                "Payout wallet balance too low",
                required=str(usdt_amount),
                available=str(available),
            )
            raise ValidationError(
                "Withdrawals are temporarily unavailable. Please try again later.",
                {"reason": "payout_wallet_balance"}
            )

    async def _reserve(
        self,
        user: User,
        quote: Dict[str, Any],
        method: WithdrawalMethod,
        wallet_address: str,
        status: WithdrawalStatus
    ) -> Withdrawal:
        """Deduct the balance and write the withdrawal plus its pending ledger entry."""
        user.fortune_balance = to_decimal(user.fortune_balance) - quote["requested_amount"]
        tracked_fresh, tracked_profit = self.fund_sources.record_withdrawal(user, quote["requested_amount"])

        transaction = await self.transactions.create(
            user_id=user.id,
            type=TransactionType.WITHDRAWAL,
            amount=quote["requested_amount"],
            net_amount=quote["net_amount"],
            currency="USDT_SOL",
            tax_amount=quote["tax_amount"],
            tax_rate=quote["tax_rate"],
            status=TransactionStatus.PENDING,
            description=f"Withdrawal to {wallet_address}",
        )

        withdrawal = Withdrawal(
            user_id=user.id,
            method=method.value,
            chain="solana",
            currency="USDT_SOL",
            wallet_address=wallet_address,
            requested_amount=quote["requested_amount"],
            from_fresh_deposit=quote["from_fresh_deposit"],
            from_profit=quote["from_profit"],
            tax_amount=quote["tax_amount"],
            tax_rate=quote["tax_rate"],
            net_amount=quote["net_amount"],
            usdt_amount=quote["usdt_amount"],
            fee_sol_amount=quote["fee_sol"] if method == WithdrawalMethod.WALLET_CONNECT else ZERO,
            tracker_fresh_deducted=tracked_fresh,
            tracker_profit_deducted=tracked_profit,
            status=status.value,
            transaction_id=transaction.id,
        )
        self.db.add(withdrawal)
        await self.db.flush()
        return withdrawal

    async def _release(
        self,
        withdrawal: Withdrawal,
        status: WithdrawalStatus,
        error_message: Optional[str] = None
    ) -> None:
        """Give the reserved amount back and close the withdrawal."""
        user = await get_user_or_raise(self.db, withdrawal.user_id, for_update=True)
        user.fortune_balance = to_decimal(user.fortune_balance) + to_decimal(withdrawal.requested_amount)
        self.fund_sources.restore_withdrawal(
            user, withdrawal.tracker_fresh_deducted, withdrawal.tracker_profit_deducted
        )

        withdrawal.status = status.value
        withdrawal.error_message = error_message
        withdrawal.processed_at = datetime.utcnow()

        await self._update_transaction(
            withdrawal,
            TransactionStatus.FAILED if status == WithdrawalStatus.FAILED else TransactionStatus.CANCELLED,
        )
        await self.db.flush()

    async def _update_transaction(
        self,
        withdrawal: Withdrawal,
        status: TransactionStatus,
        tx_signature: Optional[str] = None
    ) -> None:
        if not withdrawal.transaction_id:
            return
        transaction = await self.transactions.get_by_id(withdrawal.transaction_id)
        if transaction is not None:
            await self.transactions.update_status(transaction, status, tx_signature)

    async def _complete(self, withdrawal: Withdrawal, signature: str) -> None:
        withdrawal.status = WithdrawalStatus.COMPLETED.value
        withdrawal.tx_signature = signature
        withdrawal.processed_at = datetime.utcnow()
        await self._update_transaction(withdrawal, TransactionStatus.COMPLETED, signature)
        await self.db.flush()

        await NotificationService(self.db).notify(
            withdrawal.user_id,
            NotificationType.WITHDRAWAL_COMPLETED,
            "Withdrawal completed",
            f"${withdrawal.usdt_amount:.2f} USDT was sent to your wallet.",
            {"withdrawal_id": withdrawal.id, "tx_signature": signature},
        )

    async def prepare_atomic_withdrawal(
        self,
        user_id: str,
        amount: Decimal,
        wallet_address: str
    ) -> Dict[str, Any]:
        """
        Reserve the balance and build the transaction the user signs.

        The payout wallet has already signed its USDT transfer; the user's
        signature authorizes the SOL fee and the network fee.
        """
        wallet_address = validate_wallet_address(wallet_address)
        user = await get_user_or_raise(self.db, user_id, for_update=True)
        quote = await self._quote(user, to_decimal(amount))
        await self._ensure_payout_liquidity(quote["usdt_amount"])

        withdrawal = await self._reserve(
            user, quote, WithdrawalMethod.WALLET_CONNECT, wallet_address, WithdrawalStatus.PENDING
        )
        built = await self.solana.build_withdrawal_transaction(
            wallet_address, quote["usdt_amount"], quote["fee_sol"]
        )
        withdrawal.blockhash = built.blockhash
        await self.db.flush()

        self.logger.info(
            "Withdrawal prepared",
            withdrawal_id=withdrawal.id,
            user_id=user_id,
            amount=str(quote["requested_amount"]),
            tax=str(quote["tax_amount"]),
        )
        return {
            "withdrawal_id": withdrawal.id,
            "serialized_transaction": built.serialized,
            **quote,
        }

    async def _get_owned(self, user_id: str, withdrawal_id: str, for_update: bool = False) -> Withdrawal:
        query = select(Withdrawal).where(Withdrawal.id == withdrawal_id)
        if for_update:
            query = query.with_for_update()
        withdrawal = (await self.db.execute(query)).scalar_one_or_none()
        if withdrawal is None or withdrawal.user_id != user_id:
            raise WithdrawalNotFoundError(withdrawal_id)
        return withdrawal

    @staticmethod
    def _ensure_pending(withdrawal: Withdrawal) -> None:
        if withdrawal.status != WithdrawalStatus.PENDING.value:
            raise ValidationError(
                f"Withdrawal is not pending (status: {withdrawal.status})",
                {"status": withdrawal.status}
            )

    async def _can_still_land(self, withdrawal: Withdrawal) -> bool:
        """Whether the presigned payout of a withdrawal can still be submitted."""
        if not withdrawal.blockhash:
            return False
        return await self.solana.is_blockhash_valid(withdrawal.blockhash)

    async def confirm_atomic_withdrawal(
        self,
        user_id: str,
        withdrawal_id: str,
        signature: str
    ) -> Withdrawal:
        """Check the user-submitted signature on chain and settle the withdrawal."""
        signature = validate_signature(signature)
        withdrawal = await self._get_owned(user_id, withdrawal_id, for_update=True)
        self._ensure_pending(withdrawal)

        withdrawal.status = WithdrawalStatus.PROCESSING.value
        await self.db.flush()

        if not await self.solana.confirm_signature(signature):
            if await self._can_still_land(withdrawal):
                withdrawal.status = WithdrawalStatus.PENDING.value
                await self.db.flush()
                raise ValidationError(
                    "Transaction is not confirmed yet. Try again shortly.",
                    {"withdrawal_id": withdrawal_id, "signature": signature}
                )
            await self._release(
                withdrawal,
                WithdrawalStatus.FAILED,
                error_message=f"Transaction {signature} was not confirmed",
            )
            self.logger.warning(
                "Withdrawal failed on chain",
                withdrawal_id=withdrawal_id,
                signature=signature,
            )
            return withdrawal

        await self._complete(withdrawal, signature)
        self.logger.info("Withdrawal completed", withdrawal_id=withdrawal_id, signature=signature)
        return withdrawal

    async def cancel_atomic_withdrawal(self, user_id: str, withdrawal_id: str) -> Withdrawal:
        withdrawal = await self._get_owned(user_id, withdrawal_id, for_update=True)
        self._ensure_pending(withdrawal)
        if await self._can_still_land(withdrawal):
            raise ValidationError(
                "Withdrawal transaction can still be submitted. Try again in a minute.",
                {"withdrawal_id": withdrawal_id, "reason": "blockhash_valid"}
            )

        await self._release(withdrawal, WithdrawalStatus.CANCELLED)
        self.logger.info("Withdrawal cancelled", withdrawal_id=withdrawal_id)
        return withdrawal

    async def create_instant_withdrawal(
        self,
        user_id: str,
        amount: Decimal,
        wallet_address: str
    ) -> Withdrawal:
        """
        Pay a typed-in address straight from the payout wallet.

        A failed transfer restores the balance and leaves the withdrawal
        marked failed.
        """
        wallet_address = validate_wallet_address(wallet_address)
        user = await get_user_or_raise(self.db, user_id, for_update=True)
        quote = await self._quote(user, to_decimal(amount))
        await self._ensure_payout_liquidity(quote["usdt_amount"])

        withdrawal = await self._reserve(
            user, quote, WithdrawalMethod.MANUAL_ADDRESS, wallet_address, WithdrawalStatus.PROCESSING
        )

        try:
            signature = await self.solana.send_usdt(wallet_address, quote["usdt_amount"])
        except SolanaError as e:
            await self._release(withdrawal, WithdrawalStatus.FAILED, error_message=e.message)
            self.logger.error("Instant withdrawal failed", withdrawal_id=withdrawal.id, error=e.message)
            return withdrawal

        await self._complete(withdrawal, signature)
        self.logger.info(
            "Instant withdrawal completed",
            withdrawal_id=withdrawal.id,
            user_id=user_id,
            signature=signature,
        )
        return withdrawal

    async def get_user_withdrawals(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> List[Withdrawal]:
        result = await self.db.execute(
            select(Withdrawal)
            .where(Withdrawal.user_id == user_id)
            .order_by(Withdrawal.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_withdrawal_by_id(self, user_id: str, withdrawal_id: str) -> Withdrawal:
        return await self._get_owned(user_id, withdrawal_id)
