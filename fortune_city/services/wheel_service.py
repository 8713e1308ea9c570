"""
Prize wheel.

Each spin costs bet_amount * multiplier. Free spins cover whole bet
units first. The house keeps part of every losing bet: burn_rate is
destroyed and pool_rate feeds the shared jackpot, which is capped with
any overflow burned. Landing on the jackpot sector pays out the pool.
"""

import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.wheel import JACKPOT_SECTOR, RECENT_WINS_LIMIT
from fortune_city.core.exceptions import InsufficientFundsError, ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.notification import NotificationType
from fortune_city.models.transaction import TransactionType
from fortune_city.models.user import User
from fortune_city.models.wheel import WheelSpin, WheelJackpot, JACKPOT_ID
from fortune_city.services.lookups import get_user_or_raise
from fortune_city.services.notification_service import NotificationService
from fortune_city.services.referral_service import ReferralService
from fortune_city.services.settings_service import SettingsService
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal
from fortune_city.utils.validation import mask_username


logger = structlog.get_logger(__name__)


def secure_random() -> float:
    """Uniform float in [0, 1) from 4 bytes of OS randomness."""
    return int.from_bytes(secrets.token_bytes(4), "big") / 2 ** 32


def pick_sector(sectors: List[Dict[str, Any]], roll: float) -> Dict[str, Any]:
    """Walk the cumulative chances; rounding gaps fall through to the last sector."""
    cumulative = 0.0
    for sector in sectors:
        cumulative += float(sector["chance"])
        if roll < cumulative:
            return sector
    return sectors[-1]


class WheelService:
    """Spins, jackpot pool and daily free spins."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="wheel_service")
        self.settings_service = SettingsService(db)
        self.transactions = TransactionService(db)

    async def ensure_jackpot_exists(self, for_update: bool = False) -> WheelJackpot:
        query = select(WheelJackpot).where(WheelJackpot.id == JACKPOT_ID)
        if for_update:
            query = query.with_for_update()
        jackpot = (await self.db.execute(query)).scalar_one_or_none()

        if jackpot is None:
            current = await self.settings_service.get_settings()
            jackpot = WheelJackpot(
                id=JACKPOT_ID,
                current_pool=ZERO,
                pool_cap=to_decimal(current.wheel_jackpot_cap),
                total_contributed=ZERO,
                total_paid_out=ZERO,
                total_burned=ZERO,
                times_won=0,
            )
            self.db.add(jackpot)
            await self.db.flush()
            self.logger.info("Created wheel jackpot")

        return jackpot

    async def spin(self, user_id: str, multiplier: int) -> Dict[str, Any]:
        current = await self.settings_service.get_settings()
        if multiplier not in current.wheel_multipliers:
            raise ValidationError(
                f"Invalid multiplier: {multiplier}",
                {"multiplier": multiplier, "allowed": current.wheel_multipliers}
            )

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        jackpot = await self.ensure_jackpot_exists(for_update=True)

        bet_amount = to_decimal(current.wheel_bet_amount)
        total_bet = bet_amount * multiplier

        free_spins_used = min(user.free_spins_remaining or 0, multiplier)
        required = bet_amount * (multiplier - free_spins_used)
        if to_decimal(user.fortune_balance) < required:
            raise InsufficientFundsError(required, user.fortune_balance)

        user.fortune_balance = to_decimal(user.fortune_balance) - required
        user.free_spins_remaining = (user.free_spins_remaining or 0) - free_spins_used

        sector = pick_sector(current.wheel_sectors, secure_random())
        is_jackpot = sector["sector"] == JACKPOT_SECTOR

        jackpot_amount = ZERO
        if is_jackpot:
            jackpot_amount = to_decimal(jackpot.current_pool)
            payout = jackpot_amount
        else:
            payout = total_bet * to_decimal(sector["multiplier"])

        loss = max(total_bet - payout, ZERO)
        burn_amount = loss * to_decimal(current.wheel_burn_rate)
        pool_amount = loss * to_decimal(current.wheel_pool_rate)

        cap = to_decimal(current.wheel_jackpot_cap)
        jackpot.pool_cap = cap
        now = datetime.utcnow()

        if is_jackpot:
            # The winning spin's own contribution seeds the next pool
            overflow = max(pool_amount - cap, ZERO)
            jackpot.current_pool = pool_amount - overflow
            jackpot.total_paid_out = to_decimal(jackpot.total_paid_out) + jackpot_amount
            jackpot.times_won = (jackpot.times_won or 0) + 1
            jackpot.last_winner_id = user.id
            jackpot.last_won_amount = jackpot_amount
            jackpot.last_won_at = now
        else:
            new_pool = to_decimal(jackpot.current_pool) + pool_amount
            overflow = max(new_pool - cap, ZERO)
            jackpot.current_pool = new_pool - overflow

        # Overflow above the cap is burned and never counts as contributed
        burn_amount += overflow
        pool_contributed = max(pool_amount - overflow, ZERO)
        jackpot.total_contributed = to_decimal(jackpot.total_contributed) + pool_contributed
        jackpot.total_burned = to_decimal(jackpot.total_burned) + burn_amount

        if payout > 0:
            user.fortune_balance = to_decimal(user.fortune_balance) + payout
            await self.transactions.create(
                user_id=user.id,
                type=TransactionType.WHEEL_PRIZE,
                amount=payout,
                description="Wheel jackpot" if is_jackpot else f"Wheel {sector['sector']}",
            )

        user.last_spin_at = now
        net_result = payout - total_bet
        result = {
            "sector": sector["sector"],
            "multiplier": float(sector["multiplier"]),
            "payout": float(payout),
        }

        spin = WheelSpin(
            user_id=user.id,
            bet_amount=bet_amount,
            bet_multiplier=multiplier,
            total_bet=total_bet,
            total_payout=payout,
            net_result=net_result,
            spin_results=[result],
            sector=sector["sector"],
            jackpot_won=is_jackpot,
            jackpot_amount=jackpot_amount,
            burn_amount=burn_amount,
            pool_amount=pool_amount,
            free_spins_used=free_spins_used,
        )
        self.db.add(spin)
        await self.db.flush()

        if is_jackpot:
            await NotificationService(self.db).notify(
                user.id,
                NotificationType.WHEEL_JACKPOT_WON,
                "JACKPOT!",
                f"You won the wheel jackpot: ${jackpot_amount:.2f}",
                {"amount": float(jackpot_amount), "spin_id": spin.id},
            )

        self.logger.info(
            "Wheel spin",
            user_id=user.id,
            multiplier=multiplier,
            sector=sector["sector"],
            payout=str(payout),
            free_spins_used=free_spins_used,
        )

        return {
            "spin_id": spin.id,
            "bet_multiplier": multiplier,
            "total_bet": total_bet,
            "total_payout": payout,
            "net_result": net_result,
            "result": result,
            "jackpot_won": is_jackpot,
            "jackpot_amount": jackpot_amount,
            "burn_amount": burn_amount,
            "pool_amount": pool_amount,
            "free_spins_used": free_spins_used,
            "free_spins_remaining": user.free_spins_remaining,
            "new_balance": user.fortune_balance,
            "current_jackpot_pool": jackpot.current_pool,
        }

    async def _last_winner_name(self, jackpot: WheelJackpot) -> Optional[str]:
        if not jackpot.last_winner_id:
            return None
        winner = await self.db.get(User, jackpot.last_winner_id)
        return mask_username(winner.display_name) if winner else None

    async def get_jackpot_info(self) -> Dict[str, Any]:
        jackpot = await self.ensure_jackpot_exists()
        return {
            "current_pool": jackpot.current_pool,
            "pool_cap": jackpot.pool_cap,
            "times_won": jackpot.times_won,
            "total_paid_out": jackpot.total_paid_out,
            "last_winner": await self._last_winner_name(jackpot),
            "last_won_amount": jackpot.last_won_amount,
            "last_won_at": jackpot.last_won_at,
        }

    async def get_state(self, user_id: str) -> Dict[str, Any]:
        user = await get_user_or_raise(self.db, user_id)
        current = await self.settings_service.get_settings()
        jackpot = await self.get_jackpot_info()

        return {
            "jackpot_pool": jackpot["current_pool"],
            "jackpot_cap": jackpot["pool_cap"],
            "last_winner": jackpot["last_winner"],
            "last_won_amount": jackpot["last_won_amount"],
            "times_won": jackpot["times_won"],
            "total_paid_out": jackpot["total_paid_out"],
            "bet_amount": to_decimal(current.wheel_bet_amount),
            "multipliers": current.wheel_multipliers,
            "free_spins_remaining": user.free_spins_remaining,
            "sectors": current.wheel_sectors,
            "fortune_balance": user.fortune_balance,
        }

    async def get_history(self, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        limit = min(max(limit, 1), 100)
        page = max(page, 1)

        result = await self.db.execute(
            select(WheelSpin)
            .where(WheelSpin.user_id == user_id)
            .order_by(WheelSpin.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = (await self.db.execute(
            select(func.count(WheelSpin.id)).where(WheelSpin.user_id == user_id)
        )).scalar_one()

        return {"items": list(result.scalars().all()), "total": total, "page": page, "limit": limit}

    async def get_recent_wins(self, limit: int = RECENT_WINS_LIMIT) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(WheelSpin, User)
            .join(User, User.id == WheelSpin.user_id)
            .where(WheelSpin.net_result > 0)
            .order_by(WheelSpin.created_at.desc())
            .limit(limit)
        )

        wins = []
        for spin, user in result.all():
            top = max(
                (float(r.get("multiplier", 0)) for r in spin.spin_results or []),
                default=0.0,
            )
            wins.append({
                "id": spin.id,
                "username": mask_username(user.display_name),
                "total_payout": spin.total_payout,
                "top_multiplier": top,
                "jackpot_won": spin.jackpot_won,
                "created_at": spin.created_at,
            })
        return wins

    async def reset_daily_free_spins(self) -> int:
        """Give every user base + per-active-referral free spins for the new UTC day."""
        current = await self.settings_service.get_settings()
        referrals = ReferralService(self.db)
        now = datetime.utcnow()

        result = await self.db.execute(select(User).where(User.is_banned.is_(False)))
        users = list(result.scalars().all())
        for user in users:
            active = await referrals.get_active_referral_count(user.id)
            user.free_spins_remaining = (
                current.wheel_free_spins_base + active * current.wheel_free_spins_per_referral
            )
            user.last_spin_reset_at = now

        await self.db.flush()
        self.logger.info("Daily free spins reset", users=len(users))
        return len(users)
