"""
Tests for SolanaService transaction building against a stub RPC client.
"""

import base64
import struct
from decimal import Decimal
from types import SimpleNamespace

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from fortune_city.core.config import settings
from fortune_city.core.exceptions import SolanaError
from fortune_city.services.solana_service import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    SolanaService,
    get_associated_token_address,
)

from conftest import make_address, make_signature


PAYOUT = Keypair.from_seed(bytes([5] * 32))
USER = Pubkey.from_string(make_address(9))
BLOCKHASH = Hash(bytes([3] * 32))


class StubClient:
    """Answers the handful of RPC calls SolanaService makes."""

    def __init__(self):
        self.existing_accounts = set()
        self.statuses = []
        self.blockhash_valid = True
        self.raw_sent = []
        self.send_error = None

    async def get_account_info(self, pubkey):
        return SimpleNamespace(value=object() if pubkey in self.existing_accounts else None)

    async def get_latest_blockhash(self):
        return SimpleNamespace(value=SimpleNamespace(blockhash=BLOCKHASH, last_valid_block_height=100))

    async def is_blockhash_valid(self, blockhash):
        assert blockhash == BLOCKHASH
        return SimpleNamespace(value=self.blockhash_valid)

    async def send_raw_transaction(self, raw, opts=None):
        if self.send_error is not None:
            raise self.send_error
        self.raw_sent.append(raw)
        return SimpleNamespace(value=Transaction.from_bytes(raw).signatures[0])

    async def get_signature_statuses(self, signatures, search_transaction_history=False):
        return SimpleNamespace(value=[self.statuses.pop(0) if self.statuses else None])

    async def close(self):
        pass


@pytest.fixture
def stub_client(monkeypatch):
    monkeypatch.setattr(settings, "payout_wallet_secret", str(PAYOUT))
    return StubClient()


@pytest.fixture
def service(stub_client):
    return SolanaService(client=stub_client)


def programs(transaction: Transaction):
    keys = transaction.message.account_keys
    return [keys[ix.program_id_index] for ix in transaction.message.instructions]


def accounts(transaction: Transaction, index: int):
    keys = transaction.message.account_keys
    return [keys[i] for i in transaction.message.instructions[index].accounts]


def signature_of(transaction: Transaction, signer: Pubkey) -> Signature:
    position = list(transaction.message.account_keys).index(signer)
    return transaction.signatures[position]


async def test_withdrawal_transaction_layout(service):
    built = await service.build_withdrawal_transaction(str(USER), Decimal(8), Decimal("0.005"))

    transaction = Transaction.from_bytes(base64.b64decode(built.serialized))
    assert built.blockhash == str(BLOCKHASH)
    assert transaction.message.recent_blockhash == BLOCKHASH

    # the user pays the network fee
    assert transaction.message.account_keys[0] == USER
    assert programs(transaction) == [SYSTEM_PROGRAM_ID, ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID]

    mint = service.usdt_mint
    create_ata = accounts(transaction, 1)
    assert create_ata[0] == PAYOUT.pubkey()
    assert create_ata[1] == get_associated_token_address(USER, mint)
    assert create_ata[2] == USER

    transfer = transaction.message.instructions[2]
    assert bytes(transfer.data) == struct.pack("<BQB", 12, 8_000_000, 6)
    assert accounts(transaction, 2) == [
        get_associated_token_address(PAYOUT.pubkey(), mint),
        mint,
        get_associated_token_address(USER, mint),
        PAYOUT.pubkey(),
    ]

    message = bytes(transaction.message)
    assert signature_of(transaction, PAYOUT.pubkey()) == PAYOUT.sign_message(message)
    assert signature_of(transaction, USER) == Signature.default()


async def test_withdrawal_transaction_skips_existing_token_account(service, stub_client):
    stub_client.existing_accounts.add(get_associated_token_address(USER, service.usdt_mint))

    built = await service.build_withdrawal_transaction(str(USER), Decimal(8), Decimal(0))

    transaction = Transaction.from_bytes(base64.b64decode(built.serialized))
    assert programs(transaction) == [TOKEN_PROGRAM_ID]


async def test_send_usdt_signs_with_payout_wallet(service, stub_client):
    signature = await service.send_usdt(str(USER), Decimal("2.5"))

    transaction = Transaction.from_bytes(stub_client.raw_sent[0])
    assert transaction.message.account_keys[0] == PAYOUT.pubkey()
    assert programs(transaction) == [ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID]
    assert accounts(transaction, 0)[0] == PAYOUT.pubkey()
    assert bytes(transaction.message.instructions[1].data) == struct.pack("<BQB", 12, 2_500_000, 6)
    assert transaction.signatures[0] == PAYOUT.sign_message(bytes(transaction.message))
    assert signature == str(transaction.signatures[0])


async def test_send_usdt_wraps_rpc_errors(service, stub_client):
    stub_client.send_error = RuntimeError("node is behind")

    with pytest.raises(SolanaError, match="node is behind"):
        await service.send_usdt(str(USER), Decimal(1))


async def test_confirm_signature_waits_for_commitment(service, stub_client):
    stub_client.statuses = [
        SimpleNamespace(err=None, confirmation_status="processed"),
        SimpleNamespace(err=None, confirmation_status="confirmed"),
    ]

    assert await service.confirm_signature(make_signature(4), attempts=3, delay=0) is True


async def test_confirm_signature_failed_on_chain(service, stub_client):
    stub_client.statuses = [SimpleNamespace(err="InstructionError", confirmation_status="confirmed")]

    assert await service.confirm_signature(make_signature(4), attempts=3, delay=0) is False


async def test_confirm_signature_gives_up(service):
    assert await service.confirm_signature(make_signature(4), attempts=2, delay=0) is False


async def test_blockhash_validity(service, stub_client):
    assert await service.is_blockhash_valid(str(BLOCKHASH)) is True

    stub_client.blockhash_valid = False
    assert await service.is_blockhash_valid(str(BLOCKHASH)) is False
