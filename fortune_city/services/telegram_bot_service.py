"""
Telegram Bot service for pushing notifications to players.
Uses aiogram v3; the Mini App user id doubles as the private chat id.
"""

import asyncio
from typing import Optional, Union

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter
)
import structlog

from fortune_city.core.config import settings

logger = structlog.get_logger(__name__)

MAX_RETRY_WAIT_SECONDS = 60


class TelegramBotService:
    """Thin wrapper around an aiogram Bot that never raises on delivery errors."""

    def __init__(self, token: Optional[str] = None):
        token = token if token is not None else settings.telegram_bot_token
        self.bot: Optional[Bot] = None

        if token:
            self.bot = Bot(
                token=token,
                default=DefaultBotProperties(
                    parse_mode=ParseMode.HTML,
                    link_preview_is_disabled=True
                )
            )
            logger.info("Telegram Bot service initialized")
        else:
            logger.warning("Telegram Bot token not configured")

    def is_available(self) -> bool:
        return self.bot is not None

    async def send_message(
        self,
        chat_id: Union[int, str],
        message: str,
        disable_notification: bool = False
    ) -> bool:
        """
        Send an HTML message to a chat.

        Returns:
            bool: True if sent successfully
        """
        if not self.is_available():
            return False

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=message,
                disable_notification=disable_notification
            )
            logger.debug("Message sent", chat_id=chat_id, message_length=len(message))
            return True

        except TelegramForbiddenError as e:
            logger.warning("Bot was blocked by user", chat_id=chat_id, error=str(e))
        except TelegramBadRequest as e:
            logger.error("Bad request to Telegram API", chat_id=chat_id, error=str(e))
        except TelegramRetryAfter as e:
            logger.warning(
                "Rate limit hit",
                chat_id=chat_id,
                retry_after=e.retry_after
            )
            await asyncio.sleep(min(e.retry_after, MAX_RETRY_WAIT_SECONDS))
        except TelegramNetworkError as e:
            logger.error("Network error sending message", chat_id=chat_id, error=str(e))
        except TelegramAPIError as e:
            logger.error("Telegram API error", chat_id=chat_id, error=str(e))

        return False

    async def close(self) -> None:
        if self.bot is not None:
            await self.bot.session.close()


_telegram_bot_service: Optional[TelegramBotService] = None


def get_telegram_bot_service() -> TelegramBotService:
    """Process-wide bot instance."""
    global _telegram_bot_service
    if _telegram_bot_service is None:
        _telegram_bot_service = TelegramBotService()
    return _telegram_bot_service


async def close_telegram_bot_service() -> None:
    global _telegram_bot_service
    if _telegram_bot_service is not None:
        await _telegram_bot_service.close()
        _telegram_bot_service = None
