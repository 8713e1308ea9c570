"""
In-app notifications, mirrored to Telegram when a bot is configured.

The notification row is written in the caller's transaction; the Telegram
message goes out only after that transaction commits.
"""

from datetime import datetime
from functools import partial
from typing import Any, Dict, Optional, Union

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.core import database
from fortune_city.core.exceptions import NotFoundError
from fortune_city.models.notification import Notification, NotificationType
from fortune_city.models.user import User
from fortune_city.services.telegram_bot_service import (
    TelegramBotService, get_telegram_bot_service
)


logger = structlog.get_logger(__name__)

TYPE_EMOJI = {
    NotificationType.MACHINE_EXPIRED: "⏰",
    NotificationType.COIN_BOX_FULL: "💰",
    NotificationType.REFERRAL_JOINED: "👥",
    NotificationType.DEPOSIT_CREDITED: "✅",
    NotificationType.WHEEL_JACKPOT_WON: "🎰",
    NotificationType.WITHDRAWAL_COMPLETED: "💸",
}


class NotificationService:
    """Stores notifications and pushes them to Telegram."""

    def __init__(self, db: AsyncSession, bot: Optional[TelegramBotService] = None):
        self.db = db
        self.bot = bot if bot is not None else get_telegram_bot_service()
        self.logger = logger.bind(service="notification_service")

    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type.value,
            title=title,
            message=message,
            data=data or {},
        )
        self.db.add(notification)
        await self.db.flush()

        if self.bot.is_available():
            await self._queue_telegram(notification, type)

        return notification

    async def _queue_telegram(self, notification: Notification, type: NotificationType) -> None:
        user = await self.db.get(User, notification.user_id)
        if user is None or not user.telegram_id:
            return

        text = f"{TYPE_EMOJI.get(type, 'ℹ️')} <b>{notification.title}</b>\n\n{notification.message}"
        database.call_after_commit(
            self.db, partial(deliver_to_telegram, self.bot, notification.id, user.telegram_id, text)
        )

    async def get_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0
    ) -> Dict[str, Any]:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.read_at.is_(None))

        result = await self.db.execute(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        total = (await self.db.execute(
            select(func.count(Notification.id)).where(*conditions)
        )).scalar_one()

        return {
            "notifications": list(result.scalars().all()),
            "total": total,
            "unread_count": await self.get_unread_count(user_id),
        }

    async def get_unread_count(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.read_at.is_(None),
            )
        )
        return result.scalar_one()

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError(
                "Notification not found",
                {"notification_id": notification_id}
            )

        if notification.read_at is None:
            notification.read_at = datetime.utcnow()
            await self.db.flush()
        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
            .values(read_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


async def deliver_to_telegram(
    bot: TelegramBotService,
    notification_id: str,
    chat_id: Union[int, str],
    text: str
) -> bool:
    """Send a committed notification to Telegram and stamp it as sent."""
    async with database.get_async_session() as session:
        # gone when the savepoint that wrote it was rolled back
        if await session.get(Notification, notification_id) is None:
            return False

    if not await bot.send_message(chat_id, text):
        return False

    async with database.get_async_session() as session:
        await session.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(sent_to_telegram_at=datetime.utcnow())
        )
    return True
