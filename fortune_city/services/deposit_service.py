"""
Wallet-connect deposits and connected wallets.

The client asks for a deposit with a memo, sends the transfer from the
user's wallet and reports the signature back. Crediting happens once the
transfer is seen on chain, either right away when the RPC already has it
or later through the Helius webhook.
"""

import secrets
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tokens import (
    CURRENCY_FORTUNE, CURRENCY_SOL, CURRENCY_USDT_SOL, MIN_DEPOSIT, SUPPORTED_DEPOSIT_CURRENCIES
)
from fortune_city.core.config import settings
from fortune_city.core.exceptions import ConflictError, NotFoundError, SolanaError, ValidationError
from fortune_city.models.deposit import Deposit, DepositMethod, DepositStatus, WalletConnection
from fortune_city.services.deposit_processor import DepositProcessor
from fortune_city.services.helius_webhook_service import HeliusWebhookService, ParsedDeposit
from fortune_city.services.price_oracle import PriceOracle, get_price_oracle
from fortune_city.services.solana_service import SolanaService, get_solana_service
from fortune_city.utils.money import to_decimal
from fortune_city.utils.validation import validate_signature, validate_wallet_address


logger = structlog.get_logger(__name__)

MEMO_LENGTH = 16


def generate_memo() -> str:
    return secrets.token_urlsafe(MEMO_LENGTH)[:MEMO_LENGTH]


class DepositService:

    def __init__(
        self,
        db: AsyncSession,
        solana: Optional[SolanaService] = None,
        price_oracle: Optional[PriceOracle] = None
    ):
        self.db = db
        self._solana = solana
        self.price_oracle = price_oracle or get_price_oracle()
        self.logger = logger.bind(service="deposit_service")

    @property
    def solana(self) -> SolanaService:
        if self._solana is None:
            self._solana = get_solana_service()
        return self._solana

    async def connect_wallet(self, user_id: str, wallet_address: str) -> WalletConnection:
        wallet_address = validate_wallet_address(wallet_address)

        owner = (await self.db.execute(
            select(WalletConnection).where(
                WalletConnection.wallet_address == wallet_address,
                WalletConnection.chain == "solana",
            )
        )).scalars().first()
        if owner is not None and owner.user_id != user_id:
            raise ConflictError("Wallet is already connected to another account")

        connection = (await self.db.execute(
            select(WalletConnection).where(
                WalletConnection.user_id == user_id,
                WalletConnection.chain == "solana",
            )
        )).scalar_one_or_none()

        if connection is None:
            connection = WalletConnection(user_id=user_id, chain="solana", wallet_address=wallet_address)
            self.db.add(connection)
        else:
            connection.wallet_address = wallet_address

        await self.db.flush()
        self.logger.info("Wallet connected", user_id=user_id, wallet_address=wallet_address)
        return connection

    async def get_connected_wallet(self, user_id: str) -> Optional[WalletConnection]:
        result = await self.db.execute(
            select(WalletConnection).where(
                WalletConnection.user_id == user_id,
                WalletConnection.chain == "solana",
            )
        )
        return result.scalar_one_or_none()

    async def initiate_wallet_deposit(
        self,
        user_id: str,
        currency: str,
        amount: Decimal
    ) -> Dict[str, Any]:
        if currency not in SUPPORTED_DEPOSIT_CURRENCIES:
            raise ValidationError(f"Unsupported currency: {currency}", {"currency": currency})

        amount = to_decimal(amount)
        minimum = to_decimal(MIN_DEPOSIT[currency])
        if amount < minimum:
            raise ValidationError(
                f"Minimum deposit is {minimum} {currency}",
                {"minimum": float(minimum), "currency": currency}
            )

        if not settings.deposit_wallet_address:
            raise ValidationError("Deposits are not configured")
        if currency == CURRENCY_FORTUNE and not settings.fortune_mint:
            raise ValidationError("FORTUNE deposits are not configured")

        memo = generate_memo()
        deposit = Deposit(
            user_id=user_id,
            method=DepositMethod.WALLET_CONNECT.value,
            chain="solana",
            currency=currency,
            amount=amount,
            memo=memo,
            tx_signature=f"pending_{memo}",
            status=DepositStatus.PENDING.value,
        )
        self.db.add(deposit)
        await self.db.flush()

        self.logger.info(
            "Wallet deposit initiated",
            deposit_id=deposit.id,
            user_id=user_id,
            currency=currency,
            amount=str(amount),
        )

        mint = None
        if currency == CURRENCY_USDT_SOL:
            mint = settings.usdt_mint
        elif currency == CURRENCY_FORTUNE:
            mint = settings.fortune_mint

        return {
            "deposit_id": deposit.id,
            "memo": memo,
            "recipient": settings.deposit_wallet_address,
            "amount": amount,
            "currency": currency,
            "mint": mint,
        }

    async def confirm_wallet_deposit(
        self,
        user_id: str,
        deposit_id: str,
        signature: str
    ) -> Deposit:
        """
        Attach the client's signature to a pending deposit.

        If the RPC already shows the transfer to the deposit wallet the
        deposit is credited now; otherwise the webhook credits it.
        """
        signature = validate_signature(signature)

        deposit = (await self.db.execute(
            select(Deposit).where(
                Deposit.id == deposit_id,
                Deposit.user_id == user_id,
                Deposit.status == DepositStatus.PENDING.value,
                Deposit.method == DepositMethod.WALLET_CONNECT.value,
            ).with_for_update()
        )).scalar_one_or_none()
        if deposit is None:
            raise NotFoundError("Pending deposit not found", {"deposit_id": deposit_id})

        existing = (await self.db.execute(
            select(Deposit.id).where(Deposit.tx_signature == signature)
        )).scalar_one_or_none()
        if existing is not None and existing != deposit_id:
            raise ConflictError("Transaction already processed", {"signature": signature})

        deposit.tx_signature = signature
        await self.db.flush()
        self.logger.info("Wallet deposit signature attached", deposit_id=deposit_id, signature=signature)

        await self._try_credit_from_chain(deposit)
        return deposit

    async def _try_credit_from_chain(self, deposit: Deposit) -> None:
        try:
            details = await self.solana.get_transaction_details(deposit.tx_signature)
        except SolanaError as e:
            self.logger.warning("Deposit lookup failed, waiting for webhook", deposit_id=deposit.id, error=e.message)
            return

        if details is None or not details.success:
            return

        mint = None
        if deposit.currency == CURRENCY_USDT_SOL:
            mint = settings.usdt_mint
        elif deposit.currency == CURRENCY_FORTUNE:
            mint = settings.fortune_mint

        received = details.received(settings.deposit_wallet_address, mint)
        if received <= 0:
            self.logger.warning("Transaction has no transfer to the deposit wallet", deposit_id=deposit.id)
            return

        wallet = await self.get_connected_wallet(deposit.user_id)
        webhook = HeliusWebhookService(self.db, DepositProcessor(self.db, self.price_oracle))
        await webhook.process_incoming(ParsedDeposit(
            currency=deposit.currency,
            amount=received,
            to_address=settings.deposit_wallet_address,
            from_address=wallet.wallet_address if wallet else None,
            signature=deposit.tx_signature,
            slot=details.slot,
            mint=mint,
        ))

    async def get_user_deposits(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Deposit]:
        result = await self.db.execute(
            select(Deposit)
            .where(Deposit.user_id == user_id)
            .order_by(Deposit.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_deposit_by_id(self, user_id: str, deposit_id: str) -> Deposit:
        deposit = await self.db.get(Deposit, deposit_id)
        if deposit is None or deposit.user_id != user_id:
            raise NotFoundError("Deposit not found", {"deposit_id": deposit_id})
        return deposit

    async def get_rates(self) -> Dict[str, Decimal]:
        rates = await self.price_oracle.get_rates()
        return {
            "sol": rates[CURRENCY_SOL],
            "usdt": rates[CURRENCY_USDT_SOL],
            "fortune": rates[CURRENCY_FORTUNE],
        }
