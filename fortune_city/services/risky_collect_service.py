"""
Fortune's Gamble: collect a coin box double-or-half.

A win pays twice the coin box, a loss half of it. The win chance grows
with the machine's gamble level, which is bought per machine.
"""

import secrets
from datetime import datetime
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tiers import (
    GAMBLE_LOSE_MULTIPLIER,
    GAMBLE_WIN_MULTIPLIER,
    MAX_GAMBLE_LEVEL,
    calculate_gamble_ev,
    get_gamble_level_config,
)
from fortune_city.core.exceptions import ValidationError
from fortune_city.models.base import ZERO
from fortune_city.models.machine import MachineStatus
from fortune_city.models.transaction import TransactionType
from fortune_city.services.fame_service import FameService
from fortune_city.services.fund_source_service import FundSourceService
from fortune_city.services.lookups import get_machine_or_raise, get_user_or_raise
from fortune_city.services.machine_service import calculate_income, ensure_collectable
from fortune_city.services.payments import deduct_fortune
from fortune_city.services.transaction_service import TransactionService
from fortune_city.utils.money import to_decimal


logger = structlog.get_logger(__name__)

ROLL_RESOLUTION = 1_000_000


def roll_gamble(win_chance: float) -> bool:
    """Cryptographically random win/lose draw."""
    return secrets.randbelow(ROLL_RESOLUTION) < int(win_chance * ROLL_RESOLUTION)


class RiskyCollectService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="risky_collect_service")
        self.transactions = TransactionService(db)
        self.fund_sources = FundSourceService(db)
        self.fame = FameService(db)

    async def get_gamble_info(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id)
        level = machine.fortune_gamble_level or 0
        current = get_gamble_level_config(level)

        info = {
            "machine_id": machine.id,
            "level": level,
            "win_chance": current.win_chance,
            "win_multiplier": GAMBLE_WIN_MULTIPLIER,
            "lose_multiplier": GAMBLE_LOSE_MULTIPLIER,
            "expected_value": calculate_gamble_ev(level),
            "can_upgrade": level < MAX_GAMBLE_LEVEL,
            "next_level": None,
            "next_win_chance": None,
            "upgrade_cost": None,
        }
        if level < MAX_GAMBLE_LEVEL:
            nxt = get_gamble_level_config(level + 1)
            info["next_level"] = nxt.level
            info["next_win_chance"] = nxt.win_chance
            info["upgrade_cost"] = to_decimal(machine.purchase_price) * nxt.cost_percent / 100
        return info

    async def risky_collect(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        user = await get_user_or_raise(self.db, user_id, for_update=True)

        now = datetime.utcnow()
        state = calculate_income(machine, now)
        ensure_collectable(state)

        base_amount = state.coin_box_current
        if base_amount <= 0:
            raise ValidationError("Nothing to collect")

        overclock = to_decimal(machine.overclock_multiplier)
        overclock_bonus = base_amount * (overclock - 1) if overclock > 0 else ZERO
        boosted = base_amount + overclock_bonus

        config = get_gamble_level_config(machine.fortune_gamble_level or 0)
        won = roll_gamble(config.win_chance)
        multiplier = to_decimal(GAMBLE_WIN_MULTIPLIER if won else GAMBLE_LOSE_MULTIPLIER)
        payout = boosted * multiplier

        machine.coin_box_current = ZERO
        machine.last_calculated_at = now
        machine.accumulated_income = to_decimal(machine.accumulated_income) + payout
        machine.profit_paid_out = to_decimal(machine.profit_paid_out) + state.current_profit + overclock_bonus
        machine.principal_paid_out = to_decimal(machine.principal_paid_out) + state.current_principal
        machine.overclock_multiplier = ZERO
        machine.coin_box_full_notified_at = None

        user.fortune_balance = to_decimal(user.fortune_balance) + payout
        # The principal share of the box comes back as is; everything else is profit
        self.fund_sources.record_profit_collection(
            user, max(ZERO, payout - state.current_principal)
        )

        await self.transactions.create(
            user_id=user_id,
            machine_id=machine_id,
            type=TransactionType.MACHINE_INCOME_RISKY,
            amount=payout,
            description=f"Fortune's Gamble {'win' if won else 'loss'} x{multiplier}",
        )

        fame_earned = 0
        if machine.status == MachineStatus.ACTIVE.value:
            fame_earned += await self.fame.earn_machine_passive_fame(user, machine, now)
        fame_earned += await self.fame.earn_manual_collect_fame(user, machine)

        await self.db.flush()

        self.logger.info(
            "Risky collect",
            machine_id=machine_id,
            user_id=user_id,
            won=won,
            base=str(base_amount),
            payout=str(payout),
        )

        return {
            "won": won,
            "original_amount": base_amount,
            "final_amount": payout,
            "multiplier": multiplier,
            "win_chance": config.win_chance,
            "overclock_applied": overclock > 0,
            "new_balance": user.fortune_balance,
            "fame_earned": fame_earned,
            "machine": machine,
        }

    async def upgrade_gamble_level(self, machine_id: str, user_id: str) -> Dict[str, Any]:
        machine = await get_machine_or_raise(self.db, machine_id, user_id, for_update=True)
        if machine.status != MachineStatus.ACTIVE.value:
            raise ValidationError("Machine is not active", {"status": machine.status})

        level = machine.fortune_gamble_level or 0
        if level >= MAX_GAMBLE_LEVEL:
            raise ValidationError("Gamble level is already at maximum", {"level": level})

        nxt = get_gamble_level_config(level + 1)
        cost = to_decimal(machine.purchase_price) * nxt.cost_percent / 100

        user = await get_user_or_raise(self.db, user_id, for_update=True)
        if cost > 0:
            deduct_fortune(user, cost)
            await self.transactions.create(
                user_id=user_id,
                machine_id=machine_id,
                type=TransactionType.GAMBLE_UPGRADE,
                amount=cost,
                description=f"Gamble level {nxt.level}",
            )

        machine.fortune_gamble_level = nxt.level
        await self.db.flush()

        self.logger.info(
            "Gamble level upgraded",
            machine_id=machine_id,
            level=nxt.level,
            cost=str(cost),
        )
        return {
            "machine": machine,
            "level": nxt.level,
            "win_chance": nxt.win_chance,
            "cost": cost,
            "new_balance": user.fortune_balance,
        }
