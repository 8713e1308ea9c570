"""
Player accounts: creation from Telegram identity, profile and stats.
"""

from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.auth.tma_auth import TMAUser
from fortune_city.core.exceptions import FortuneCityException, ValidationError
from fortune_city.models.machine import Machine, MachineStatus
from fortune_city.models.user import User
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.referral_service import ReferralService
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.transaction_service import TransactionService
from fortune_city.services.withdrawal_service import effective_tax_rate
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)

REFERRAL_CODE_ATTEMPTS = 10


class UserService:
    """Service for player accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="user_service")
        self.settings_service = SettingsService(db)

    async def get_by_id(self, user_id: str) -> User:
        return await get_user_or_raise(self.db, user_id)

    async def get_by_telegram_id(self, telegram_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.telegram_id == str(telegram_id))
        )
        return result.scalar_one_or_none()

    async def _unique_referral_code(self) -> str:
        for _ in range(REFERRAL_CODE_ATTEMPTS):
            code = User.generate_referral_code()
            taken = (await self.db.execute(
                select(User.id).where(User.referral_code == code)
            )).scalar_one_or_none()
            if taken is None:
                return code
        raise ValidationError("Could not generate a unique referral code")

    async def find_or_create_from_telegram(
        self,
        tma_user: TMAUser,
        referrer_code: Optional[str] = None
    ) -> Tuple[User, bool]:
        """
        Load the player for a Telegram user, creating it on first sight.

        Returns (user, created). Profile fields are refreshed from Telegram
        on every call; the referrer is only attached when the account is new.
        """
        telegram_id = str(tma_user.id)
        user = await self.get_by_telegram_id(telegram_id)

        if user is not None:
            user.username = tma_user.username
            user.first_name = tma_user.first_name
            user.last_name = tma_user.last_name
            if tma_user.photo_url:
                user.avatar_url = tma_user.photo_url
            await self.db.flush()
            return user, False

        user = User(
            telegram_id=telegram_id,
            username=tma_user.username,
            first_name=tma_user.first_name,
            last_name=tma_user.last_name,
            avatar_url=tma_user.photo_url,
            referral_code=await self._unique_referral_code(),
            is_og=await self.settings_service.is_prelaunch(),
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            # Another request created the same Telegram user first
            await self.db.rollback()
            existing = await self.get_by_telegram_id(telegram_id)
            if existing is None:
                raise
            return existing, False

        self.logger.info(
            "User created",
            user_id=user.id,
            telegram_id=telegram_id,
            is_og=user.is_og,
        )

        if referrer_code:
            try:
                await ReferralService(self.db).set_referrer(user.id, referrer_code)
            except FortuneCityException as e:
                # A bad start_param must not block sign-up
                self.logger.warning(
                    "Referral code ignored",
                    user_id=user.id,
                    code=referrer_code,
                    error=e.message,
                )

        return user, True

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        user = await get_user_or_raise(self.db, user_id)
        current = await self.settings_service.get_settings()

        return {
            "id": user.id,
            "telegram_id": user.telegram_id,
            "username": user.username,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "avatar_url": user.avatar_url,
            "referral_code": user.referral_code,
            "referred_by_id": user.referred_by_id,
            "fortune_balance": user.fortune_balance,
            "bonus_fortune": user.bonus_fortune,
            "referral_balance": user.referral_balance,
            "total_spendable": user.total_spendable,
            "total_fresh_deposits": user.total_fresh_deposits,
            "total_profit_collected": user.total_profit_collected,
            "max_tier_reached": user.max_tier_reached,
            "max_tier_unlocked": user.max_tier_unlocked,
            "max_available_tier": max(current.max_global_tier, user.max_tier_unlocked),
            "current_tax_rate": to_decimal(user.current_tax_rate),
            "tax_discount": to_decimal(user.tax_discount),
            "effective_tax_rate": effective_tax_rate(user),
            "fame": user.fame,
            "total_fame_earned": user.total_fame_earned,
            "login_streak": user.login_streak,
            "free_spins_remaining": user.free_spins_remaining,
            "is_og": user.is_og,
            "is_prelaunch": await self.settings_service.is_prelaunch(),
            "created_at": user.created_at,
        }

    async def get_stats(self, user_id: str) -> Dict[str, Any]:
        await get_user_or_raise(self.db, user_id)

        rows = await self.db.execute(
            select(Machine.status, func.count(Machine.id))
            .where(Machine.user_id == user_id)
            .group_by(Machine.status)
        )
        machines_by_status = {status.value: 0 for status in MachineStatus}
        for status, count in rows.all():
            machines_by_status[status] = count

        invested = (await self.db.execute(
            select(func.coalesce(func.sum(Machine.purchase_price), 0))
            .where(Machine.user_id == user_id)
        )).scalar_one()

        stats = await TransactionService(self.db).get_stats(user_id)
        stats.update({
            "machines_by_status": machines_by_status,
            "total_machines": sum(machines_by_status.values()),
            "total_invested": to_decimal(invested),
            "active_referrals": await ReferralService(self.db).get_active_referral_count(user_id),
        })
        return stats
