"""
Solana RPC access for deposits and USDT payouts.

Payouts are sent from a hot payout wallet. Wallet-connect withdrawals are
built here as a transaction the payout wallet partially signs; the user's
wallet pays the network fee, adds its own signature and submits it.
"""

import asyncio
import base64
import struct
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
import structlog

from fortune_city.constants.tokens import SOL_DECIMALS
from fortune_city.core.config import settings, SolanaConfig
from fortune_city.core.exceptions import ConfigurationError, SolanaError
from fortune_city.utils.money import from_base_units, to_base_units


logger = structlog.get_logger(__name__)

CONFIRM_ATTEMPTS = 30
CONFIRM_DELAY_SECONDS = 1.0

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# SPL token instruction tags
TRANSFER_CHECKED = 12
CREATE_ATA_IDEMPOTENT = 1


@dataclass
class TransactionDetails:
    """Balance changes of a confirmed transaction, keyed by owner address."""
    signature: str
    slot: int
    success: bool
    sol_received: Dict[str, Decimal] = field(default_factory=dict)
    # owner -> mint -> amount
    token_received: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)

    def received(self, owner: str, mint: Optional[str] = None) -> Decimal:
        if mint is None:
            return self.sol_received.get(owner, Decimal(0))
        return self.token_received.get(owner, {}).get(mint, Decimal(0))


@dataclass
class BuiltTransaction:
    """A partially signed transaction and the blockhash it expires with."""
    serialized: str
    blockhash: str


def _pubkey(address: Union[str, Pubkey]) -> Pubkey:
    return address if isinstance(address, Pubkey) else Pubkey.from_string(address)


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def create_associated_token_account_idempotent(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=get_associated_token_address(owner, mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=accounts,
        data=bytes([CREATE_ATA_IDEMPOTENT]),
    )


def transfer_checked(
    source: Pubkey,
    mint: Pubkey,
    dest: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int
) -> Instruction:
    accounts = [
        AccountMeta(pubkey=source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=dest, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]
    # tag u8, amount u64 LE, decimals u8
    data = struct.pack("<BQB", TRANSFER_CHECKED, amount, decimals)
    return Instruction(program_id=TOKEN_PROGRAM_ID, accounts=accounts, data=data)


class SolanaService:
    """Async Solana RPC wrapper for the payout wallet."""

    def __init__(self, client: Optional[AsyncClient] = None):
        rpc_config = SolanaConfig.get_rpc_config()
        self.client = client or AsyncClient(
            endpoint=rpc_config["endpoint"],
            commitment=Commitment(rpc_config["commitment"]),
            timeout=rpc_config["timeout"],
        )
        self.usdt_mint = Pubkey.from_string(settings.usdt_mint)
        self.usdt_decimals = settings.usdt_decimals
        self._payout_keypair: Optional[Keypair] = None
        self.logger = logger.bind(service="solana_service")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.client.close()

    @property
    def payout_keypair(self) -> Keypair:
        if self._payout_keypair is None:
            if not settings.payout_wallet_secret:
                raise ConfigurationError("Payout wallet is not configured")
            self._payout_keypair = Keypair.from_base58_string(settings.payout_wallet_secret)
        return self._payout_keypair

    @property
    def payout_address(self) -> str:
        return str(self.payout_keypair.pubkey())

    async def get_health(self) -> bool:
        try:
            response = await self.client.get_health()
            return response.value == "ok"
        except Exception as e:
            self.logger.error("Health check failed", error=str(e))
            return False

    async def _latest_blockhash(self) -> Hash:
        try:
            response = await self.client.get_latest_blockhash()
            return response.value.blockhash
        except Exception as e:
            self.logger.error("Failed to get blockhash", error=str(e))
            raise SolanaError(f"Failed to get latest blockhash: {e}")

    async def account_exists(self, address: Union[str, Pubkey]) -> bool:
        try:
            response = await self.client.get_account_info(_pubkey(address))
            return response.value is not None
        except Exception as e:
            self.logger.error("Failed to get account info", address=str(address), error=str(e))
            raise SolanaError(f"Failed to get account info: {e}")

    async def get_usdt_balance(self, owner: Union[str, Pubkey, None] = None) -> Decimal:
        """USDT held by an owner's associated token account; the payout wallet by default."""
        owner_key = _pubkey(owner) if owner else self.payout_keypair.pubkey()
        ata = get_associated_token_address(owner_key, self.usdt_mint)

        if not await self.account_exists(ata):
            return Decimal(0)

        try:
            response = await self.client.get_token_account_balance(ata)
            return from_base_units(int(response.value.amount), response.value.decimals)
        except Exception as e:
            self.logger.error("Failed to get token balance", owner=str(owner_key), error=str(e))
            raise SolanaError(f"Failed to get USDT balance: {e}")

    async def _usdt_payout_instructions(self, recipient: Pubkey, usdt_amount: Decimal) -> List[Instruction]:
        """
        Create the recipient's token account when missing, then transfer_checked.

        The payout wallet pays the token account rent in both withdrawal flows.
        """
        source = self.payout_keypair.pubkey()
        source_ata = get_associated_token_address(source, self.usdt_mint)
        recipient_ata = get_associated_token_address(recipient, self.usdt_mint)

        instructions = []
        if not await self.account_exists(recipient_ata):
            instructions.append(create_associated_token_account_idempotent(
                payer=source, owner=recipient, mint=self.usdt_mint
            ))

        instructions.append(transfer_checked(
            source=source_ata,
            mint=self.usdt_mint,
            dest=recipient_ata,
            owner=source,
            amount=to_base_units(usdt_amount, self.usdt_decimals),
            decimals=self.usdt_decimals,
        ))
        return instructions

    async def build_withdrawal_transaction(
        self,
        user_wallet: str,
        usdt_amount: Decimal,
        fee_sol: Decimal
    ) -> BuiltTransaction:
        """
        Build the wallet-connect withdrawal transaction.

        Instructions: SOL fee from the user to the payout wallet, the
        user's token account if missing, USDT to the user. The user is the
        fee payer; the payout wallet signs its transfer here.

        Returns:
            Base64 serialized, partially signed transaction and its blockhash
        """
        user = _pubkey(user_wallet)
        payout = self.payout_keypair.pubkey()

        instructions = []
        fee_lamports = to_base_units(fee_sol, SOL_DECIMALS)
        if fee_lamports > 0:
            instructions.append(transfer(TransferParams(
                from_pubkey=user, to_pubkey=payout, lamports=fee_lamports
            )))
        instructions.extend(await self._usdt_payout_instructions(user, usdt_amount))

        blockhash = await self._latest_blockhash()
        message = Message.new_with_blockhash(instructions, user, blockhash)
        transaction = Transaction.new_unsigned(message)
        transaction.partial_sign([self.payout_keypair], blockhash)

        self.logger.info(
            "Built withdrawal transaction",
            user_wallet=user_wallet,
            usdt_amount=str(usdt_amount),
            fee_lamports=fee_lamports,
            blockhash=str(blockhash),
        )
        return BuiltTransaction(
            serialized=base64.b64encode(bytes(transaction)).decode("ascii"),
            blockhash=str(blockhash),
        )

    async def is_blockhash_valid(self, blockhash: str) -> bool:
        """Whether a transaction built on this blockhash can still land."""
        try:
            response = await self.client.is_blockhash_valid(Hash.from_string(blockhash))
        except Exception as e:
            self.logger.error("Blockhash validity check failed", blockhash=blockhash, error=str(e))
            raise SolanaError(f"Failed to check blockhash: {e}")
        return bool(response.value)

    async def send_usdt(self, recipient: str, usdt_amount: Decimal) -> str:
        """Send USDT straight from the payout wallet, which also pays the fee."""
        payout = self.payout_keypair.pubkey()
        instructions = await self._usdt_payout_instructions(_pubkey(recipient), usdt_amount)

        blockhash = await self._latest_blockhash()
        message = Message.new_with_blockhash(instructions, payout, blockhash)
        transaction = Transaction([self.payout_keypair], message, blockhash)

        try:
            # preflight runs at the client's commitment
            response = await self.client.send_raw_transaction(bytes(transaction))
        except Exception as e:
            self.logger.error("USDT transfer failed", recipient=recipient, error=str(e))
            raise SolanaError(f"Failed to send USDT: {e}")

        signature = str(response.value)
        self.logger.info(
            "USDT sent",
            recipient=recipient,
            usdt_amount=str(usdt_amount),
            signature=signature,
        )
        return signature

    async def confirm_signature(
        self,
        signature: str,
        attempts: int = CONFIRM_ATTEMPTS,
        delay: float = CONFIRM_DELAY_SECONDS
    ) -> bool:
        """
        Wait for a signature to reach the configured commitment.

        Returns False when the transaction failed on chain or was not seen
        within the attempts.
        """
        sig = Signature.from_string(signature)
        for _ in range(attempts):
            try:
                response = await self.client.get_signature_statuses(
                    [sig], search_transaction_history=True
                )
            except Exception as e:
                self.logger.warning("Signature status check failed", signature=signature, error=str(e))
                await asyncio.sleep(delay)
                continue

            status = response.value[0]
            if status is not None:
                if status.err is not None:
                    self.logger.warning("Transaction failed on chain", signature=signature, err=str(status.err))
                    return False
                if status.confirmation_status is not None:
                    level = str(status.confirmation_status).split(".")[-1].lower()
                    if level in ("confirmed", "finalized"):
                        return True
            await asyncio.sleep(delay)

        self.logger.warning("Transaction not confirmed in time", signature=signature)
        return False

    async def get_transaction_details(self, signature: str) -> Optional[TransactionDetails]:
        """Balance deltas of a transaction, or None when the RPC does not know it."""
        try:
            response = await self.client.get_transaction(
                Signature.from_string(signature),
                encoding="json",
                max_supported_transaction_version=0,
            )
        except Exception as e:
            self.logger.error("Failed to get transaction", signature=signature, error=str(e))
            raise SolanaError(f"Failed to get transaction: {e}")

        if not response.value:
            return None

        tx = response.value
        meta = tx.transaction.meta
        if not meta:
            return None

        accounts = [str(key) for key in tx.transaction.transaction.message.account_keys]
        details = TransactionDetails(
            signature=signature,
            slot=tx.slot,
            success=meta.err is None,
        )

        for index, account in enumerate(accounts):
            delta = meta.post_balances[index] - meta.pre_balances[index]
            if delta > 0:
                details.sol_received[account] = from_base_units(delta, SOL_DECIMALS)

        pre_tokens = _token_amounts(meta.pre_token_balances)
        for key, post in _token_amounts(meta.post_token_balances).items():
            delta = post - pre_tokens.get(key, Decimal(0))
            if delta > 0:
                owner, mint = key
                details.token_received.setdefault(owner, {})[mint] = delta

        return details


def _token_amounts(balances: Optional[List[Any]]) -> Dict[tuple, Decimal]:
    amounts = {}
    for balance in balances or []:
        if balance.owner is None:
            continue
        key = (str(balance.owner), str(balance.mint))
        amounts[key] = from_base_units(
            int(balance.ui_token_amount.amount), balance.ui_token_amount.decimals
        )
    return amounts


_solana_service: Optional[SolanaService] = None


def get_solana_service() -> SolanaService:
    global _solana_service
    if _solana_service is None:
        _solana_service = SolanaService()
    return _solana_service


def set_solana_service(service: Optional[SolanaService]) -> None:
    """Replace the shared instance (tests inject a fake RPC here)."""
    global _solana_service
    _solana_service = service


async def close_solana_service() -> None:
    global _solana_service
    if _solana_service is not None:
        await _solana_service.close()
        _solana_service = None
