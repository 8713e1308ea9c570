"""
Paid tier unlocks: open the next tier for a fee instead of waiting for Fame.
"""

from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.fame import (
    FAME_AUTO_UNLOCK_THRESHOLDS,
    FAME_UNLOCK_COST_BY_TIER,
    calculate_tier_unlock_fee,
)
from fortune_city.constants.tiers import MAX_TIER, get_tier_config_or_raise
from fortune_city.core.exceptions import InsufficientFundsError, ValidationError
from fortune_city.models.transaction import TransactionType
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


class TierUnlockService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="tier_unlock_service")
        self.transactions = TransactionService(db)

    @staticmethod
    def _check_tier_range(tier: int) -> None:
        if tier < 2 or tier > MAX_TIER:
            raise ValidationError(f"Tier must be between 2 and {MAX_TIER}", {"tier": tier})

    async def get_tier_unlock_info(self, user_id: str, tier: int) -> Dict[str, Any]:
        self._check_tier_range(tier)
        config = get_tier_config_or_raise(tier)
        user = await get_user_or_raise(self.db, user_id)

        current = user.max_tier_unlocked or 1
        threshold = FAME_AUTO_UNLOCK_THRESHOLDS[tier]
        fee = to_decimal(calculate_tier_unlock_fee(config.price))

        return {
            "tier": tier,
            "already_unlocked": tier <= current,
            "can_unlock": tier == current + 1,
            "fee": fee,
            "fame_cost": FAME_UNLOCK_COST_BY_TIER[tier],
            "auto_unlock_threshold": threshold,
            "total_fame_earned": user.total_fame_earned,
            "fame_progress": min(Decimal(100), Decimal(user.total_fame_earned or 0) / threshold * 100),
            "max_tier_unlocked": current,
            "can_afford": user.total_spendable >= fee,
        }

    async def purchase_tier_unlock(self, user_id: str, tier: int) -> Dict[str, Any]:
        """Pay 10% of the tier price to unlock the next tier. Fortune balance pays first."""
        self._check_tier_range(tier)
        config = get_tier_config_or_raise(tier)
        user = await get_user_or_raise(self.db, user_id, for_update=True)

        current = user.max_tier_unlocked or 1
        if tier <= current:
            raise ValidationError(f"Tier {tier} is already unlocked", {"tier": tier})
        if tier != current + 1:
            raise ValidationError(
                f"Cannot unlock tier {tier}. Current max unlocked: {current}. "
                f"Next unlock: {current + 1}",
                {"tier": tier, "max_tier_unlocked": current}
            )

        fee = to_decimal(calculate_tier_unlock_fee(config.price))
        if user.total_spendable < fee:
            raise InsufficientFundsError(fee, user.total_spendable)

        remaining = fee
        from_fortune = min(to_decimal(user.fortune_balance), remaining)
        remaining -= from_fortune
        from_bonus = min(to_decimal(user.bonus_fortune), remaining)
        remaining -= from_bonus
        from_referral = remaining

        user.fortune_balance = to_decimal(user.fortune_balance) - from_fortune
        user.bonus_fortune = to_decimal(user.bonus_fortune) - from_bonus
        user.referral_balance = to_decimal(user.referral_balance) - from_referral
        user.max_tier_unlocked = tier

        await self.transactions.create(
            user_id=user_id,
            type=TransactionType.TIER_UNLOCK,
            amount=fee,
            description=f"Unlocked tier {tier} ({config.name})",
        )

        self.logger.info("Tier unlocked for fee", user_id=user_id, tier=tier, fee=str(fee))
        return {
            "tier": tier,
            "fee": fee,
            "max_tier_unlocked": tier,
            "new_balance": user.fortune_balance,
        }
