"""
Helius enhanced-transaction webhooks.

Helius posts a list of parsed transactions touching the monitored hot
wallet. Native SOL and known SPL token transfers into it become deposits
for the user whose connected wallet sent them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tokens import (
    CURRENCY_FORTUNE, CURRENCY_SOL, CURRENCY_USDT_SOL, SOL_DECIMALS
)
from fortune_city.core.config import settings
from fortune_city.core.exceptions import AuthenticationError, FortuneCityException
from fortune_city.models.deposit import Deposit, DepositMethod, DepositStatus, WalletConnection
from fortune_city.services.deposit_processor import DepositProcessor
from fortune_city.utils.money import from_base_units, to_decimal


logger = structlog.get_logger(__name__)


@dataclass
class ParsedDeposit:
    currency: str
    amount: Decimal
    to_address: str
    from_address: Optional[str]
    signature: str
    slot: Optional[int]
    mint: Optional[str] = None


class HeliusWebhookService:
    """Parses webhook payloads and credits the deposits they contain."""

    def __init__(self, db: AsyncSession, processor: Optional[DepositProcessor] = None):
        self.db = db
        self.processor = processor or DepositProcessor(db)
        self.logger = logger.bind(service="helius_webhook")

    @property
    def monitored_addresses(self) -> set:
        return {settings.deposit_wallet_address} if settings.deposit_wallet_address else set()

    @staticmethod
    def validate_auth_header(auth_header: Optional[str]) -> bool:
        if not settings.helius_webhook_auth:
            return False
        return auth_header == f"Bearer {settings.helius_webhook_auth}"

    @staticmethod
    def get_currency_from_mint(mint: str) -> Optional[str]:
        if mint == settings.usdt_mint:
            return CURRENCY_USDT_SOL
        if settings.fortune_mint and mint == settings.fortune_mint:
            return CURRENCY_FORTUNE
        return None

    def parse(self, payload: List[Dict[str, Any]]) -> List[ParsedDeposit]:
        monitored = self.monitored_addresses
        deposits = []

        for tx in payload or []:
            signature = tx.get("signature")
            if not signature:
                continue

            for item in tx.get("nativeTransfers") or []:
                if item.get("toUserAccount") in monitored and item.get("amount"):
                    deposits.append(ParsedDeposit(
                        currency=CURRENCY_SOL,
                        amount=from_base_units(int(item["amount"]), SOL_DECIMALS),
                        to_address=item["toUserAccount"],
                        from_address=item.get("fromUserAccount"),
                        signature=signature,
                        slot=tx.get("slot"),
                    ))

            for item in tx.get("tokenTransfers") or []:
                if item.get("toUserAccount") not in monitored:
                    continue
                currency = self.get_currency_from_mint(item.get("mint"))
                if currency is None:
                    continue
                deposits.append(ParsedDeposit(
                    currency=currency,
                    amount=to_decimal(item.get("tokenAmount")),
                    to_address=item["toUserAccount"],
                    from_address=item.get("fromUserAccount"),
                    signature=signature,
                    slot=tx.get("slot"),
                    mint=item.get("mint"),
                ))

        return deposits

    async def _find_user_id(self, parsed: ParsedDeposit) -> Optional[str]:
        if not parsed.from_address:
            return None
        result = await self.db.execute(
            select(WalletConnection.user_id).where(
                WalletConnection.wallet_address == parsed.from_address,
                WalletConnection.chain == "solana",
            )
        )
        return result.scalars().first()

    async def process_incoming(self, parsed: ParsedDeposit) -> bool:
        """
        Credit one parsed transfer.

        Returns False when it was already credited or belongs to no user.
        """
        existing = (await self.db.execute(
            select(Deposit).where(Deposit.tx_signature == parsed.signature)
        )).scalar_one_or_none()

        if existing is not None:
            if existing.status != DepositStatus.PENDING.value:
                return False
            deposit = existing
        else:
            user_id = await self._find_user_id(parsed)
            if user_id is None:
                self.logger.warning(
                    "No user for deposit",
                    to_address=parsed.to_address,
                    from_address=parsed.from_address,
                    signature=parsed.signature,
                )
                return False
            deposit = None

        # No writes until the price is known
        rate = await self.processor.price_oracle.get_price_usd(parsed.currency)

        if deposit is None:
            pending = (await self.db.execute(
                select(Deposit).where(
                    Deposit.user_id == user_id,
                    Deposit.status == DepositStatus.PENDING.value,
                    Deposit.method == DepositMethod.WALLET_CONNECT.value,
                    Deposit.tx_signature.like("pending_%"),
                ).order_by(Deposit.created_at.asc())
            )).scalars().first()

            if pending is not None:
                deposit = pending
            else:
                deposit = Deposit(
                    user_id=user_id,
                    method=DepositMethod.DEPOSIT_ADDRESS.value,
                    chain="solana",
                    currency=parsed.currency,
                    amount=parsed.amount,
                    status=DepositStatus.PENDING.value,
                    tx_signature=parsed.signature,
                )
                self.db.add(deposit)

        # The transfer on chain is authoritative over what the client declared
        deposit.tx_signature = parsed.signature
        deposit.currency = parsed.currency
        deposit.amount = parsed.amount
        deposit.slot = parsed.slot
        deposit.status = DepositStatus.CONFIRMED.value
        deposit.confirmed_at = datetime.utcnow()
        await self.db.flush()

        await self.processor.process_confirmed(deposit, rate=rate)
        return True

    async def handle_webhook(
        self,
        payload: List[Dict[str, Any]],
        auth_header: Optional[str]
    ) -> Dict[str, int]:
        if not self.validate_auth_header(auth_header):
            raise AuthenticationError("Invalid webhook authorization")

        processed = 0
        skipped = 0
        for parsed in self.parse(payload):
            try:
                async with self.db.begin_nested():
                    credited = await self.process_incoming(parsed)
            except FortuneCityException as e:
                skipped += 1
                self.logger.error(
                    "Failed to process deposit",
                    signature=parsed.signature,
                    error=e.message,
                )
                continue

            if credited:
                processed += 1
            else:
                skipped += 1

        self.logger.info("Helius webhook handled", processed=processed, skipped=skipped)
        return {"processed": processed, "skipped": skipped}
