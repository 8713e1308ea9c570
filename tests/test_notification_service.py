"""
Tests for notifications and their Telegram delivery after commit.
"""

import pytest

from fortune_city.core import database
from fortune_city.core.exceptions import ValidationError
from fortune_city.models import Notification, NotificationType, User
from fortune_city.services.notification_service import NotificationService
from fortune_city.services.telegram_bot_service import TelegramBotService


class RecordingBot(TelegramBotService):
    def __init__(self, delivered: bool = True):
        super().__init__(token="")
        self.delivered = delivered
        self.sent = []

    def is_available(self) -> bool:
        return True

    async def send_message(self, chat_id, message, disable_notification=False) -> bool:
        self.sent.append((chat_id, message))
        return self.delivered


async def add_player(session, telegram_id: str) -> User:
    user = User(telegram_id=telegram_id, username=f"p{telegram_id}", referral_code=f"N{telegram_id}")
    session.add(user)
    await session.flush()
    return user


async def test_message_waits_for_commit(session_maker):
    bot = RecordingBot()

    async with database.get_async_session() as session:
        user = await add_player(session, "800001")
        notification = await NotificationService(session, bot).notify(
            user.id, NotificationType.DEPOSIT_CREDITED, "Deposit credited", "1 SOL credited."
        )
        assert bot.sent == []

    assert bot.sent == [("800001", "✅ <b>Deposit credited</b>\n\n1 SOL credited.")]
    async with session_maker() as session:
        stored = await session.get(Notification, notification.id)
        assert stored.sent_to_telegram_at is not None


async def test_rollback_drops_message(session_maker):
    bot = RecordingBot()

    with pytest.raises(ValidationError):
        async with database.get_async_session() as session:
            user = await add_player(session, "800002")
            await NotificationService(session, bot).notify(
                user.id, NotificationType.WHEEL_JACKPOT_WON, "Jackpot!", "You won."
            )
            raise ValidationError("spin failed")

    assert bot.sent == []


async def test_rolled_back_savepoint_is_not_sent(session_maker):
    bot = RecordingBot()

    async with database.get_async_session() as session:
        user = await add_player(session, "800003")
        with pytest.raises(ValidationError):
            async with session.begin_nested():
                await NotificationService(session, bot).notify(
                    user.id, NotificationType.DEPOSIT_CREDITED, "Deposit credited", "Gone."
                )
                raise ValidationError("price unavailable")

    assert bot.sent == []


async def test_undelivered_message_stays_unstamped(session_maker):
    bot = RecordingBot(delivered=False)

    async with database.get_async_session() as session:
        user = await add_player(session, "800004")
        notification = await NotificationService(session, bot).notify(
            user.id, NotificationType.MACHINE_EXPIRED, "Machine expired", "Tier 1 expired."
        )

    assert len(bot.sent) == 1
    async with session_maker() as session:
        stored = await session.get(Notification, notification.id)
        assert stored.sent_to_telegram_at is None


async def test_unavailable_bot_queues_nothing(session):
    user = await add_player(session, "800005")

    await NotificationService(session, TelegramBotService(token="")).notify(
        user.id, NotificationType.COIN_BOX_FULL, "Coin box full", "Collect now."
    )

    assert database.AFTER_COMMIT_KEY not in session.info
