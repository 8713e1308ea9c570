"""
Shared fixtures: an in-memory database, fake chain/price services and
factories for players and machines.
"""

import itertools
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from solders.pubkey import Pubkey
from solders.signature import Signature
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fortune_city.core import database
from fortune_city.core.config import settings
from fortune_city.models import Base, Machine, User
from fortune_city.services import telegram_bot_service
from fortune_city.services.machine_service import MachineService
from fortune_city.services.price_oracle import PriceOracle, set_price_oracle
from fortune_city.services.settings_service import invalidate_cache
from fortune_city.services.solana_service import BuiltTransaction, TransactionDetails, set_solana_service


def make_address(seed: int) -> str:
    """Deterministic valid Solana address."""
    return str(Pubkey(bytes([seed] * 32)))


def make_signature(seed: int) -> str:
    """Deterministic valid transaction signature."""
    return str(Signature(bytes([seed] * 64)))


DEPOSIT_WALLET = make_address(200)
FAKE_BLOCKHASH = str(Pubkey(bytes([201] * 32)))
WEBHOOK_SECRET = "helius-secret"


class FakeSolana:
    """Stands in for SolanaService without touching an RPC node."""

    def __init__(self):
        self.usdt_balance = Decimal("100000")
        self.confirmed = True
        self.send_error: Optional[Exception] = None
        self.sent: List[Tuple[str, Decimal]] = []
        self.transactions: Dict[str, TransactionDetails] = {}
        self.blockhash_valid = False

    async def get_usdt_balance(self, owner=None) -> Decimal:
        return self.usdt_balance

    async def build_withdrawal_transaction(self, recipient, usdt_amount, fee_sol) -> BuiltTransaction:
        return BuiltTransaction(serialized="c2lnbmVkLXdpdGhkcmF3YWw=", blockhash=FAKE_BLOCKHASH)

    async def is_blockhash_valid(self, blockhash) -> bool:
        return self.blockhash_valid

    async def send_usdt(self, recipient, usdt_amount) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((recipient, usdt_amount))
        return make_signature(77)

    async def confirm_signature(self, signature, *args, **kwargs) -> bool:
        return self.confirmed

    async def get_transaction_details(self, signature) -> Optional[TransactionDetails]:
        return self.transactions.get(signature)

    async def close(self) -> None:
        pass


class FakePriceOracle(PriceOracle):
    """Fixed SOL price, no CoinGecko calls."""

    sol_price = Decimal("150")

    async def get_sol_price_usd(self, force_refresh: bool = False) -> Decimal:
        return self.sol_price


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine, monkeypatch):
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    # get_async_session() and the API dependency read this global
    monkeypatch.setattr(database, "async_session_maker", maker)
    return maker


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def fake_solana():
    fake = FakeSolana()
    set_solana_service(fake)
    yield fake
    set_solana_service(None)


@pytest.fixture(autouse=True)
def isolated_services(monkeypatch, fake_solana):
    invalidate_cache()
    set_price_oracle(FakePriceOracle())
    monkeypatch.setattr(
        telegram_bot_service, "_telegram_bot_service", telegram_bot_service.TelegramBotService(token="")
    )
    monkeypatch.setattr(settings, "deposit_wallet_address", DEPOSIT_WALLET)
    monkeypatch.setattr(settings, "helius_webhook_auth", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "fortune_mint", None)
    yield
    set_price_oracle(None)
    invalidate_cache()


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    async def _make_user(**fields) -> User:
        n = next(counter)
        fields.setdefault("telegram_id", str(500000 + n))
        fields.setdefault("username", f"player{n}")
        fields.setdefault("referral_code", f"REF{n:05d}")
        for money in (
            "fortune_balance", "bonus_fortune", "referral_balance",
            "total_fresh_deposits", "total_profit_collected",
        ):
            fields[money] = Decimal(str(fields.get(money, 0)))
        user = User(**fields)
        session.add(user)
        await session.flush()
        return user

    return _make_user


@pytest.fixture
def make_machine(session):
    async def _make_machine(user: User, tier: int = 1, age_hours: float = 0, **fields) -> Machine:
        """A machine that started age_hours ago and was never collected."""
        machine = await MachineService(session).create(user.id, tier)
        if age_hours:
            shift = timedelta(hours=age_hours)
            machine.started_at -= shift
            machine.expires_at -= shift
            machine.last_calculated_at -= shift
            machine.last_fame_calculated_at -= shift
        for key, value in fields.items():
            setattr(machine, key, value)
        await session.flush()
        return machine

    return _make_machine


def full_box_age() -> float:
    """Hours after which every coin box is full."""
    return 13


@pytest.fixture
async def client(session_maker, monkeypatch):
    from fortune_city.api.main import create_app

    monkeypatch.setattr(settings, "testing_mode", True)
    monkeypatch.setattr(settings, "rate_limit_enabled", False)
    monkeypatch.setattr(settings, "admin_telegram_ids", ["9000"])

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def auth(telegram_id: int = 1001, referral_code: Optional[str] = None) -> Dict[str, str]:
    value = f"test {telegram_id}"
    if referral_code:
        value += f":{referral_code}"
    return {"Authorization": value}


def hours_ago(hours: float) -> datetime:
    return datetime.utcnow() - timedelta(hours=hours)
