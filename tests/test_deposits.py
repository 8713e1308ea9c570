"""
Tests for wallet-connect deposits, the Helius webhook and deposit crediting.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from fortune_city.core.config import settings
from fortune_city.core.exceptions import (
    AuthenticationError, ConflictError, ExternalServiceError, NotFoundError, ValidationError
)
from fortune_city.models import Deposit, DepositMethod, DepositStatus, Notification, NotificationType
from fortune_city.services.deposit_processor import DepositProcessor
from fortune_city.services.deposit_service import DepositService
from fortune_city.services.helius_webhook_service import HeliusWebhookService
from fortune_city.services.solana_service import TransactionDetails

from conftest import DEPOSIT_WALLET, WEBHOOK_SECRET, FakePriceOracle, make_address, make_signature


PLAYER_WALLET = make_address(11)
FORTUNE_MINT = make_address(99)


def sol_transfer(signature: str, lamports: int, sender: str = PLAYER_WALLET) -> dict:
    return {
        "signature": signature,
        "slot": 1234,
        "nativeTransfers": [
            {"fromUserAccount": sender, "toUserAccount": DEPOSIT_WALLET, "amount": lamports},
        ],
        "tokenTransfers": [],
    }


def token_transfer(signature: str, mint: str, amount: float, sender: str = PLAYER_WALLET) -> dict:
    return {
        "signature": signature,
        "slot": 1235,
        "nativeTransfers": [],
        "tokenTransfers": [
            {
                "fromUserAccount": sender,
                "toUserAccount": DEPOSIT_WALLET,
                "mint": mint,
                "tokenAmount": amount,
            },
        ],
    }


@pytest.fixture
async def depositor(session, make_user):
    user = await make_user()
    await DepositService(session).connect_wallet(user.id, PLAYER_WALLET)
    return user


# Wallets

async def test_connect_wallet_is_exclusive(session, depositor, make_user):
    other = await make_user()

    with pytest.raises(ConflictError):
        await DepositService(session).connect_wallet(other.id, PLAYER_WALLET)

    connection = await DepositService(session).get_connected_wallet(depositor.id)
    assert connection.wallet_address == PLAYER_WALLET


async def test_reconnect_replaces_wallet(session, depositor):
    new_wallet = make_address(12)

    connection = await DepositService(session).connect_wallet(depositor.id, new_wallet)

    assert connection.wallet_address == new_wallet


async def test_connect_rejects_invalid_wallet(session, make_user):
    user = await make_user()

    with pytest.raises(ValidationError):
        await DepositService(session).connect_wallet(user.id, "0xdeadbeef")


# Wallet-connect deposits

async def test_initiate_wallet_deposit(session, depositor):
    result = await DepositService(session).initiate_wallet_deposit(depositor.id, "SOL", Decimal("0.5"))

    assert result["recipient"] == DEPOSIT_WALLET
    assert result["mint"] is None
    assert len(result["memo"]) == 16

    deposit = await DepositService(session).get_deposit_by_id(depositor.id, result["deposit_id"])
    assert deposit.status == DepositStatus.PENDING.value
    assert deposit.tx_signature == f"pending_{result['memo']}"


async def test_initiate_usdt_deposit_returns_mint(session, depositor):
    result = await DepositService(session).initiate_wallet_deposit(depositor.id, "USDT_SOL", Decimal(5))

    assert result["mint"] == settings.usdt_mint


async def test_initiate_wallet_deposit_rules(session, depositor, monkeypatch):
    service = DepositService(session)

    with pytest.raises(ValidationError, match="Minimum deposit"):
        await service.initiate_wallet_deposit(depositor.id, "SOL", Decimal("0.001"))

    with pytest.raises(ValidationError, match="Unsupported currency"):
        await service.initiate_wallet_deposit(depositor.id, "BTC", Decimal(1))

    with pytest.raises(ValidationError, match="FORTUNE deposits are not configured"):
        await service.initiate_wallet_deposit(depositor.id, "FORTUNE", Decimal(100))

    monkeypatch.setattr(settings, "deposit_wallet_address", None)
    with pytest.raises(ValidationError, match="Deposits are not configured"):
        await service.initiate_wallet_deposit(depositor.id, "SOL", Decimal(1))


async def test_confirm_credits_when_chain_has_transfer(session, depositor, fake_solana):
    service = DepositService(session)
    initiated = await service.initiate_wallet_deposit(depositor.id, "SOL", Decimal("0.5"))
    signature = make_signature(31)
    fake_solana.transactions[signature] = TransactionDetails(
        signature=signature,
        slot=99,
        success=True,
        sol_received={DEPOSIT_WALLET: Decimal("0.5")},
    )

    deposit = await service.confirm_wallet_deposit(depositor.id, initiated["deposit_id"], signature)

    assert deposit.status == DepositStatus.CREDITED.value
    assert deposit.amount_usd == Decimal(75)
    assert deposit.rate_to_usd == Decimal(150)
    assert depositor.fortune_balance == Decimal(75)
    assert depositor.total_fresh_deposits == Decimal(75)

    notification = (await session.execute(
        select(Notification).where(Notification.user_id == depositor.id)
    )).scalar_one()
    assert notification.type == NotificationType.DEPOSIT_CREDITED.value


async def test_confirm_waits_for_webhook(session, depositor):
    service = DepositService(session)
    initiated = await service.initiate_wallet_deposit(depositor.id, "SOL", Decimal("0.5"))
    signature = make_signature(32)

    deposit = await service.confirm_wallet_deposit(depositor.id, initiated["deposit_id"], signature)
    assert deposit.status == DepositStatus.PENDING.value
    assert deposit.tx_signature == signature

    result = await HeliusWebhookService(session).handle_webhook(
        [sol_transfer(signature, 400_000_000)], f"Bearer {WEBHOOK_SECRET}"
    )

    assert result == {"processed": 1, "skipped": 0}
    # The on-chain amount wins over the declared one
    assert deposit.amount == Decimal("0.4")
    assert deposit.status == DepositStatus.CREDITED.value
    assert depositor.fortune_balance == Decimal(60)


async def test_confirm_unknown_deposit(session, depositor):
    with pytest.raises(NotFoundError):
        await DepositService(session).confirm_wallet_deposit(
            depositor.id, "missing", make_signature(33)
        )


async def test_get_deposit_of_other_user(session, depositor, make_user):
    other = await make_user()
    initiated = await DepositService(session).initiate_wallet_deposit(depositor.id, "SOL", Decimal(1))

    with pytest.raises(NotFoundError):
        await DepositService(session).get_deposit_by_id(other.id, initiated["deposit_id"])


async def test_rates(session):
    rates = await DepositService(session).get_rates()

    assert rates == {"sol": Decimal(150), "usdt": Decimal(1), "fortune": Decimal("0.1")}


# Webhook

async def test_webhook_requires_auth(session):
    service = HeliusWebhookService(session)

    with pytest.raises(AuthenticationError):
        await service.handle_webhook([], None)
    with pytest.raises(AuthenticationError):
        await service.handle_webhook([], "Bearer wrong")


async def test_webhook_uses_pending_wallet_deposit(session, depositor):
    initiated = await DepositService(session).initiate_wallet_deposit(depositor.id, "SOL", Decimal(1))

    await HeliusWebhookService(session).handle_webhook(
        [sol_transfer(make_signature(40), 1_000_000_000)], f"Bearer {WEBHOOK_SECRET}"
    )

    deposit = await DepositService(session).get_deposit_by_id(depositor.id, initiated["deposit_id"])
    assert deposit.status == DepositStatus.CREDITED.value
    assert deposit.tx_signature == make_signature(40)


async def test_webhook_usdt_without_pending_deposit(session, depositor):
    signature = make_signature(41)

    result = await HeliusWebhookService(session).handle_webhook(
        [token_transfer(signature, settings.usdt_mint, 25)], f"Bearer {WEBHOOK_SECRET}"
    )

    assert result["processed"] == 1
    deposit = (await session.execute(
        select(Deposit).where(Deposit.tx_signature == signature)
    )).scalar_one()
    assert deposit.method == DepositMethod.DEPOSIT_ADDRESS.value
    assert deposit.currency == "USDT_SOL"
    assert depositor.fortune_balance == Decimal(25)


async def test_webhook_replay_is_skipped(session, depositor):
    payload = [token_transfer(make_signature(42), settings.usdt_mint, 25)]
    service = HeliusWebhookService(session)

    await service.handle_webhook(payload, f"Bearer {WEBHOOK_SECRET}")
    result = await service.handle_webhook(payload, f"Bearer {WEBHOOK_SECRET}")

    assert result == {"processed": 0, "skipped": 1}
    assert depositor.fortune_balance == Decimal(25)


async def test_webhook_skips_unknown_sender_and_mint(session, depositor):
    payload = [
        sol_transfer(make_signature(43), 1_000_000_000, sender=make_address(66)),
        token_transfer(make_signature(44), make_address(67), 10),
    ]

    result = await HeliusWebhookService(session).handle_webhook(payload, f"Bearer {WEBHOOK_SECRET}")

    assert result == {"processed": 0, "skipped": 1}
    assert depositor.fortune_balance == 0


async def test_webhook_fortune_token_uses_fallback_price(session, depositor, monkeypatch):
    monkeypatch.setattr(settings, "fortune_mint", FORTUNE_MINT)

    await HeliusWebhookService(session).handle_webhook(
        [token_transfer(make_signature(45), FORTUNE_MINT, 100)], f"Bearer {WEBHOOK_SECRET}"
    )

    assert depositor.fortune_balance == Decimal(10)


class PriceOutage(FakePriceOracle):
    async def get_sol_price_usd(self, force_refresh: bool = False) -> Decimal:
        raise ExternalServiceError("SOL price is unavailable")


async def test_webhook_redelivery_after_price_outage(session, depositor):
    signature = make_signature(46)
    payload = [sol_transfer(signature, 1_000_000_000)]

    first = await HeliusWebhookService(
        session, DepositProcessor(session, PriceOutage())
    ).handle_webhook(payload, f"Bearer {WEBHOOK_SECRET}")

    assert first == {"processed": 0, "skipped": 1}
    assert depositor.fortune_balance == 0
    leftover = (await session.execute(
        select(Deposit).where(Deposit.tx_signature == signature)
    )).scalar_one_or_none()
    assert leftover is None

    second = await HeliusWebhookService(session).handle_webhook(payload, f"Bearer {WEBHOOK_SECRET}")

    assert second == {"processed": 1, "skipped": 0}
    assert depositor.fortune_balance == Decimal(150)
    deposit = (await session.execute(
        select(Deposit).where(Deposit.tx_signature == signature)
    )).scalar_one()
    assert deposit.status == DepositStatus.CREDITED.value
    assert deposit.rate_to_usd == Decimal(150)


async def test_webhook_failure_keeps_pending_wallet_deposit(session, depositor):
    initiated = await DepositService(session).initiate_wallet_deposit(depositor.id, "SOL", Decimal(1))

    await HeliusWebhookService(
        session, DepositProcessor(session, PriceOutage())
    ).handle_webhook([sol_transfer(make_signature(47), 1_000_000_000)], f"Bearer {WEBHOOK_SECRET}")

    deposit = await DepositService(session).get_deposit_by_id(depositor.id, initiated["deposit_id"])
    assert deposit.status == DepositStatus.PENDING.value
    assert deposit.tx_signature.startswith("pending_")
