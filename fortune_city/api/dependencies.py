"""
API dependencies for FastAPI endpoints.
Provides reusable dependency functions for authentication and data access.
"""

from typing import Optional, Tuple

from fastapi import Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.schemas.common import PaginationParams
from fortune_city.auth.tma_auth import AuthType, TMAUser, TelegramMiniAppAuth, parse_auth_header
from fortune_city.core.config import settings
from fortune_city.core.database import get_db_session
from fortune_city.core.exceptions import AuthenticationError, AuthorizationError
from fortune_city.models.user import User
from fortune_city.services.user_service import UserService


logger = structlog.get_logger(__name__)


async def get_database(
    db: AsyncSession = Depends(get_db_session)
) -> AsyncSession:
    """Get database session dependency."""
    return db


async def get_pagination_params(
    limit: int = Query(50, ge=1, le=200, description="Number of items per page"),
    offset: int = Query(0, ge=0, description="Number of items to skip")
) -> PaginationParams:
    """Get pagination parameters."""
    return PaginationParams(limit=limit, offset=offset)


def _telegram_identity(authorization: Optional[str]) -> Tuple[TMAUser, Optional[str]]:
    """
    Resolve the Telegram user behind an Authorization header.

    `tma <initData>` is validated against the bot token. With testing_mode
    on, `test <telegram_id>[:<referral_code>]` is accepted as well.

    Returns:
        (telegram user, referral code from start_param)
    """
    auth_type, auth_data = parse_auth_header(authorization)

    if auth_type == AuthType.TEST:
        if not settings.testing_mode:
            logger.warning("Test authentication attempted outside testing mode")
            raise AuthenticationError("Test authentication is disabled")

        telegram_id, _, referral_code = auth_data.partition(":")
        if not telegram_id.isdigit():
            raise AuthenticationError("Test authentication expects a numeric Telegram id")
        return TMAUser(id=int(telegram_id), first_name=f"Tester {telegram_id}"), referral_code or None

    if not settings.telegram_bot_token:
        logger.warning("TMA authentication attempted but bot token not configured")
        raise AuthenticationError("Telegram authentication is not configured")

    init_data = TelegramMiniAppAuth(
        bot_token=settings.telegram_bot_token,
        max_age_hours=settings.telegram_auth_max_age_hours
    ).validate_init_data(auth_data)

    if init_data.user is None:
        raise AuthenticationError("Init data does not contain a user")
    return init_data.user, init_data.start_param


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_database)
) -> User:
    """Authenticated player, created on the first request."""
    tma_user, referral_code = _telegram_identity(authorization)
    user, created = await UserService(db).find_or_create_from_telegram(tma_user, referral_code)

    if user.is_banned:
        logger.warning("Banned user request", user_id=user.id)
        raise AuthorizationError("Account is banned")

    if created:
        logger.info("New player signed in", user_id=user.id, telegram_id=user.telegram_id)
    return user


async def get_admin_user(
    user: User = Depends(get_current_user)
) -> User:
    """Validate admin access by Telegram id."""
    if user.telegram_id not in settings.admin_telegram_ids:
        logger.warning("Unauthorized admin access attempt", user_id=user.id)
        raise AuthorizationError("Admin access required")
    return user
