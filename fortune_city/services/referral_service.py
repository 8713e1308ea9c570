"""
Referral system business logic.
Handles the 3-level referral system with 5%, 3%, 1% bonus rates and the
milestone rewards for bringing in active players.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tiers import REFERRAL_RATES, REFERRAL_MAX_LEVELS
from fortune_city.core.exceptions import ConflictError, ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.machine import Machine, MachineFundSource, MachineStatus
from fortune_city.models.notification import NotificationType
from fortune_city.models.referral import ReferralBonus, ReferralMilestone
from fortune_city.models.user import User
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.machine_service import MachineService
from fortune_city.services.notification_service import NotificationService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Milestone:
    milestone: str
    threshold: int
    reward: str
    description: str


MILESTONES = (
    Milestone("5_refs", 5, "free_machine_tier1", "Free Rusty Lever (Tier 1)"),
    Milestone("15_refs", 15, "tax_discount_5", "-5% city fee forever"),
    Milestone("50_refs", 50, "free_machine_tier2", "Free Lucky Cherry (Tier 2)"),
    Milestone("500_refs", 500, "vip", "VIP status"),
)

MILESTONE_TAX_DISCOUNT = Decimal("0.05")


class ReferralService:
    """Service for managing the referral system."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="referral_service")

    async def get_referral_chain(self, user_id: str) -> List[Dict[str, Any]]:
        """Referrers above a user, nearest first, up to REFERRAL_MAX_LEVELS."""
        chain = []
        current_id = user_id

        for level in range(1, REFERRAL_MAX_LEVELS + 1):
            referrer_id = (await self.db.execute(
                select(User.referred_by_id).where(User.id == current_id)
            )).scalar_one_or_none()

            if not referrer_id:
                break

            chain.append({"user_id": referrer_id, "level": level})
            current_id = referrer_id

        return chain

    async def process_referral_bonus(
        self,
        buyer_id: str,
        machine_id: str,
        fresh_amount: Decimal
    ) -> Dict[str, Any]:
        """Credit each referrer's referral balance with their rate of the fresh money spent."""
        fresh_amount = to_decimal(fresh_amount)
        if fresh_amount <= 0:
            return {"bonuses": [], "total_distributed": ZERO}

        bonuses = []
        total = ZERO

        for link in await self.get_referral_chain(buyer_id):
            rate = REFERRAL_RATES.get(link["level"])
            if not rate:
                continue

            rate = to_decimal(rate)
            amount = fresh_amount * rate

            referrer = await get_user_or_raise(self.db, link["user_id"], for_update=True)
            referrer.referral_balance = to_decimal(referrer.referral_balance) + amount

            bonus = ReferralBonus(
                referrer_id=referrer.id,
                source_id=buyer_id,
                machine_id=machine_id,
                level=link["level"],
                rate=rate,
                fresh_amount=fresh_amount,
                amount=amount,
            )
            self.db.add(bonus)
            bonuses.append(bonus)
            total += amount

        await self.db.flush()

        if bonuses:
            self.logger.info(
                "Referral bonuses paid",
                buyer_id=buyer_id,
                machine_id=machine_id,
                levels=len(bonuses),
                total=str(total),
            )
        return {"bonuses": bonuses, "total_distributed": total}

    async def _referral_ids_by_level(self, user_id: str) -> Dict[int, List[str]]:
        levels: Dict[int, List[str]] = {}
        parents = [user_id]

        for level in range(1, REFERRAL_MAX_LEVELS + 1):
            if not parents:
                levels[level] = []
                continue
            result = await self.db.execute(
                select(User.id).where(User.referred_by_id.in_(parents))
            )
            parents = list(result.scalars().all())
            levels[level] = parents

        return levels

    async def _fresh_funded_user_ids(self, user_ids: List[str]) -> set:
        """Users among user_ids that bought at least one machine with fresh money."""
        if not user_ids:
            return set()
        result = await self.db.execute(
            select(Machine.user_id)
            .join(MachineFundSource, MachineFundSource.machine_id == Machine.id)
            .where(
                Machine.user_id.in_(user_ids),
                MachineFundSource.fresh_deposit_amount > 0,
            )
            .distinct()
        )
        return set(result.scalars().all())

    async def get_active_referral_count(self, user_id: str) -> int:
        """Referrals on all levels that bought a machine with fresh money."""
        levels = await self._referral_ids_by_level(user_id)
        total = 0
        for ids in levels.values():
            total += len(await self._fresh_funded_user_ids(ids))
        return total

    async def get_referral_stats(self, user_id: str) -> Dict[str, Any]:
        user = await get_user_or_raise(self.db, user_id)
        levels = await self._referral_ids_by_level(user_id)

        earned_rows = await self.db.execute(
            select(ReferralBonus.level, func.coalesce(func.sum(ReferralBonus.amount), 0))
            .where(ReferralBonus.referrer_id == user_id)
            .group_by(ReferralBonus.level)
        )
        earned_by_level = {row[0]: to_decimal(row[1]) for row in earned_rows.all()}

        by_level = []
        active_total = 0
        for level, ids in sorted(levels.items()):
            active = len(await self._fresh_funded_user_ids(ids))
            active_total += active
            by_level.append({
                "level": level,
                "count": len(ids),
                "active_count": active,
                "earned": earned_by_level.get(level, ZERO),
            })

        return {
            "total_referrals": sum(item["count"] for item in by_level),
            "active_referrals": active_total,
            "by_level": by_level,
            "total_earned": sum((item["earned"] for item in by_level), ZERO),
            "referral_balance": user.referral_balance,
            "referral_code": user.referral_code,
        }

    async def get_referral_list(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Direct referrals with what each one contributed."""
        result = await self.db.execute(
            select(User)
            .where(User.referred_by_id == user_id)
            .order_by(User.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        referrals = list(result.scalars().all())
        active_ids = await self._fresh_funded_user_ids([r.id for r in referrals])

        contributed_rows = await self.db.execute(
            select(ReferralBonus.source_id, func.coalesce(func.sum(ReferralBonus.amount), 0))
            .where(ReferralBonus.referrer_id == user_id)
            .group_by(ReferralBonus.source_id)
        )
        contributed = {row[0]: to_decimal(row[1]) for row in contributed_rows.all()}

        return [
            {
                "id": ref.id,
                "username": ref.username,
                "first_name": ref.first_name,
                "level": 1,
                "is_active": ref.id in active_ids,
                "total_contributed": contributed.get(ref.id, ZERO),
                "joined_at": ref.created_at,
            }
            for ref in referrals
        ]

    async def can_withdraw_referral_balance(self, user_id: str) -> bool:
        result = await self.db.execute(
            select(Machine.id).where(
                Machine.user_id == user_id,
                Machine.status == MachineStatus.ACTIVE.value,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def withdraw_referral_balance(
        self,
        user_id: str,
        amount: Optional[Decimal] = None
    ) -> User:
        """Move referral earnings into the spendable fortune balance."""
        user = await get_user_or_raise(self.db, user_id, for_update=True)

        if not await self.can_withdraw_referral_balance(user_id):
            raise ValidationError(
                "You need at least one active machine to withdraw referral balance"
            )

        available = to_decimal(user.referral_balance)
        amount = available if amount is None else to_decimal(amount)

        if amount > available:
            raise ValidationError(
                "Insufficient referral balance",
                {"requested": float(amount), "available": float(available)}
            )
        if amount <= 0:
            raise ValidationError("Nothing to withdraw")

        user.referral_balance = available - amount
        user.fortune_balance = to_decimal(user.fortune_balance) + amount
        await self.db.flush()

        self.logger.info("Referral balance withdrawn", user_id=user_id, amount=str(amount))
        return user

    async def find_by_referral_code(self, code: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.referral_code == code))
        return result.scalar_one_or_none()

    async def set_referrer(self, user_id: str, referral_code: str) -> User:
        referrer = await self.find_by_referral_code(referral_code)
        if referrer is None:
            raise ValidationError("Invalid referral code", {"code": referral_code})

        if referrer.id == user_id:
            raise ValidationError("Cannot refer yourself")

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        if user.referred_by_id:
            raise ValidationError("Referrer already set")

        user.referred_by_id = referrer.id
        await self.db.flush()

        await NotificationService(self.db).notify(
            referrer.id,
            NotificationType.REFERRAL_JOINED,
            "New referral",
            f"{user.display_name} joined with your link. "
            f"You earn {int(REFERRAL_RATES[1] * 100)}% of their fresh purchases.",
            {"referral_name": user.display_name},
        )

        self.logger.info("Referrer set", user_id=user_id, referrer_id=referrer.id)
        return user

    # Milestones

    async def count_direct_referrals_with_machines(self, user_id: str) -> int:
        """Milestone progress: direct referrals that own at least one machine."""
        result = await self.db.execute(
            select(func.count(func.distinct(User.id)))
            .select_from(User)
            .join(Machine, Machine.user_id == User.id)
            .where(User.referred_by_id == user_id)
        )
        return result.scalar_one()

    async def get_milestone_progress(self, user_id: str) -> Dict[str, Any]:
        active = await self.count_direct_referrals_with_machines(user_id)
        claimed_rows = await self.db.execute(
            select(ReferralMilestone).where(ReferralMilestone.user_id == user_id)
        )
        claimed = {row.milestone: row.created_at for row in claimed_rows.scalars().all()}

        return {
            "active_referrals": active,
            "milestones": [
                {
                    "milestone": m.milestone,
                    "threshold": m.threshold,
                    "reward": m.reward,
                    "description": m.description,
                    "claimed": m.milestone in claimed,
                    "claimed_at": claimed.get(m.milestone),
                    "can_claim": m.milestone not in claimed and active >= m.threshold,
                }
                for m in MILESTONES
            ],
        }

    async def claim_milestone(self, user_id: str, milestone_id: str) -> Dict[str, Any]:
        definition = next((m for m in MILESTONES if m.milestone == milestone_id), None)
        if definition is None:
            raise ValidationError("Invalid milestone", {"milestone": milestone_id})

        existing = await self.db.execute(
            select(ReferralMilestone.id).where(
                ReferralMilestone.user_id == user_id,
                ReferralMilestone.milestone == milestone_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Milestone already claimed", {"milestone": milestone_id})

        active = await self.count_direct_referrals_with_machines(user_id)
        if active < definition.threshold:
            raise ValidationError(
                f"Need {definition.threshold} active referrals, have {active}",
                {"threshold": definition.threshold, "active_referrals": active}
            )

        self.db.add(ReferralMilestone(
            user_id=user_id,
            milestone=milestone_id,
            reward=definition.reward,
        ))
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError("Milestone already claimed", {"milestone": milestone_id})

        machine_id = None
        if definition.reward == "free_machine_tier1":
            machine_id = (await MachineService(self.db).create_free_machine(user_id, 1)).id
        elif definition.reward == "free_machine_tier2":
            machine_id = (await MachineService(self.db).create_free_machine(user_id, 2)).id
        elif definition.reward == "tax_discount_5":
            user = await get_user_or_raise(self.db, user_id, for_update=True)
            user.tax_discount = MILESTONE_TAX_DISCOUNT
            await self.db.flush()

        self.logger.info(
            "Milestone claimed",
            user_id=user_id,
            milestone=milestone_id,
            reward=definition.reward,
        )
        return {"success": True, "reward": definition.reward, "machine_id": machine_id}
