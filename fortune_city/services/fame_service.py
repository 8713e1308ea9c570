"""
Fame (⚡) service: the non-withdrawable progression currency.

Fame is earned passively by active machines, by manual collections,
purchases and daily logins, and spent on speed-ups, overclocks and
collector hires. Lifetime fame (total_fame_earned) unlocks tiers.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.fame import (
    FAME_PER_MANUAL_COLLECT,
    FAME_UNLOCK_COST_BY_TIER,
    MIN_PASSIVE_FAME_HOURS,
    calculate_daily_login_fame,
    get_fame_per_hour,
    get_fame_purchase_amount,
    get_max_unlocked_tier_by_fame,
)
from fortune_city.constants.tiers import MAX_TIER
from fortune_city.core.exceptions import (
    ConflictError, InsufficientFameError, ValidationError
)
from fortune_city.models.fame import FameTransaction, FameSource
from fortune_city.models.machine import Machine
from fortune_city.models.user import User


logger = structlog.get_logger(__name__)


def utc_date_string(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


class FameService:
    """Earning, spending and reporting Fame."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="fame_service")

    async def _log(
        self,
        user: User,
        amount: int,
        source: FameSource,
        description: Optional[str],
        machine_id: Optional[str]
    ) -> None:
        self.db.add(FameTransaction(
            user_id=user.id,
            amount=amount,
            source=source.value,
            machine_id=machine_id,
            description=description,
            balance_after=user.fame,
        ))
        await self.db.flush()

    async def earn_fame(
        self,
        user: User,
        amount: int,
        source: FameSource,
        description: Optional[str] = None,
        machine_id: Optional[str] = None
    ) -> int:
        """
        Credit Fame and log it.

        Lifetime fame crossing an auto-unlock threshold raises
        max_tier_unlocked; it never lowers it.

        Returns:
            The user's fame balance after the credit
        """
        if amount <= 0:
            return user.fame

        user.fame = (user.fame or 0) + amount
        user.total_fame_earned = (user.total_fame_earned or 0) + amount

        unlocked = get_max_unlocked_tier_by_fame(user.total_fame_earned)
        if unlocked > (user.max_tier_unlocked or 1):
            self.logger.info(
                "Tier auto-unlocked by Fame",
                user_id=user.id,
                tier=unlocked,
                total_fame_earned=user.total_fame_earned,
            )
            user.max_tier_unlocked = unlocked

        await self._log(user, amount, source, description, machine_id)
        return user.fame

    async def spend_fame(
        self,
        user: User,
        amount: int,
        source: FameSource,
        description: Optional[str] = None,
        machine_id: Optional[str] = None
    ) -> int:
        if amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": amount})
        if (user.fame or 0) < amount:
            raise InsufficientFameError(amount, user.fame or 0)

        user.fame -= amount
        await self._log(user, -amount, source, description, machine_id)
        return user.fame

    async def earn_machine_passive_fame(
        self,
        user: User,
        machine: Machine,
        now: Optional[datetime] = None
    ) -> int:
        """Award fame_per_hour(tier) for every full hour fraction since the last award."""
        now = now or datetime.utcnow()
        since = machine.last_fame_calculated_at or machine.started_at
        hours = (now - since).total_seconds() / 3600

        if hours < MIN_PASSIVE_FAME_HOURS:
            return 0

        earned = int(get_fame_per_hour(machine.tier) * hours)
        if earned <= 0:
            return 0

        machine.last_fame_calculated_at = now
        await self.earn_fame(
            user,
            earned,
            FameSource.MACHINE_PASSIVE,
            description=f"Tier {machine.tier} passive ({hours:.1f}h)",
            machine_id=machine.id,
        )
        return earned

    async def earn_manual_collect_fame(self, user: User, machine: Machine) -> int:
        await self.earn_fame(
            user,
            FAME_PER_MANUAL_COLLECT,
            FameSource.MANUAL_COLLECT,
            description="Manual coin collect",
            machine_id=machine.id,
        )
        return FAME_PER_MANUAL_COLLECT

    async def earn_purchase_fame(self, user: User, tier: int, is_upgrade: bool) -> int:
        amount = get_fame_purchase_amount(tier, is_upgrade)
        if amount <= 0:
            return 0
        description = f"Tier {tier} upgrade purchase" if is_upgrade else f"Tier {tier} purchase"
        await self.earn_fame(user, amount, FameSource.MACHINE_PURCHASE, description=description)
        return amount

    async def claim_daily_login(
        self,
        user: User,
        now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """
        Claim the once-per-UTC-day login reward.

        The streak continues when the previous claim was yesterday and
        resets to 1 otherwise.
        """
        now = now or datetime.utcnow()
        today = utc_date_string(now)

        if user.last_login_date == today:
            raise ConflictError("Daily login already claimed today")

        yesterday = utc_date_string(now - timedelta(days=1))
        streak = (user.login_streak or 0) + 1 if user.last_login_date == yesterday else 1

        earned = calculate_daily_login_fame(streak)
        user.login_streak = streak
        user.last_login_date = today

        total_fame = await self.earn_fame(
            user,
            earned,
            FameSource.DAILY_LOGIN,
            description=f"Day {streak} streak",
        )

        self.logger.info("Daily login claimed", user_id=user.id, streak=streak, earned=earned)
        return {"earned": earned, "streak": streak, "total_fame": total_fame}

    async def unlock_tier_with_fame(self, user: User, tier: int) -> Dict[str, int]:
        """Unlock the next tier early by spending Fame."""
        if tier < 2 or tier > MAX_TIER:
            raise ValidationError(f"Tier must be between 2 and {MAX_TIER}", {"tier": tier})

        current = user.max_tier_unlocked or 1
        if tier != current + 1:
            raise ValidationError(
                f"Cannot unlock tier {tier}. Current max unlocked: {current}. "
                f"Next unlock: {current + 1}",
                {"tier": tier, "max_tier_unlocked": current}
            )

        cost = FAME_UNLOCK_COST_BY_TIER[tier]
        await self.spend_fame(user, cost, FameSource.TIER_UNLOCK, description=f"Unlocked tier {tier}")
        user.max_tier_unlocked = tier
        await self.db.flush()

        self.logger.info("Tier unlocked with Fame", user_id=user.id, tier=tier, cost=cost)
        return {
            "tier": tier,
            "cost": cost,
            "max_tier_unlocked": user.max_tier_unlocked,
            "remaining_fame": user.fame,
        }

    @staticmethod
    def get_balance(user: User) -> Dict[str, Any]:
        return {
            "fame": user.fame,
            "total_fame_earned": user.total_fame_earned,
            "login_streak": user.login_streak,
            "last_login_date": user.last_login_date,
            "max_tier_unlocked": user.max_tier_unlocked,
        }

    async def get_history(self, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        limit = min(max(limit, 1), 100)
        page = max(page, 1)

        result = await self.db.execute(
            select(FameTransaction)
            .where(FameTransaction.user_id == user_id)
            .order_by(FameTransaction.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = (await self.db.execute(
            select(func.count(FameTransaction.id)).where(FameTransaction.user_id == user_id)
        )).scalar_one()

        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "limit": limit,
        }
