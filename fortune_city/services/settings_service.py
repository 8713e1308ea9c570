"""
System settings service.

Settings live in a single row (id "default") that is created on demand.
A frozen snapshot of the row is cached in process so hot paths (wheel
spins, purchases) do not hit the database for every read; every write
through this service refreshes the cache.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from fortune_city.constants.tiers import MAX_TIER
from fortune_city.core.exceptions import ValidationError
from fortune_city.models.machine import Machine, MachineStatus
from fortune_city.models.settings import SystemSettings, DEFAULT_SETTINGS_ID


logger = structlog.get_logger(__name__)

# Columns an admin may change through update_settings()
UPDATABLE_FIELDS = (
    "max_global_tier",
    "is_prelaunch",
    "prelaunch_ends_at",
    "min_withdrawal_amount",
    "max_withdrawal_amount",
    "wallet_connect_fee_sol",
    "wheel_bet_amount",
    "wheel_multipliers",
    "wheel_sectors",
    "wheel_burn_rate",
    "wheel_pool_rate",
    "wheel_jackpot_cap",
    "wheel_free_spins_base",
    "wheel_free_spins_per_referral",
    "overclock_fortune_prices",
    "overclock_fame_prices",
)


@dataclass(frozen=True)
class SettingsSnapshot:
    """Detached, read-only copy of the settings row."""
    max_global_tier: int
    is_prelaunch: bool
    prelaunch_ends_at: Optional[datetime]
    min_withdrawal_amount: Decimal
    max_withdrawal_amount: Decimal
    wallet_connect_fee_sol: Decimal
    wheel_bet_amount: Decimal
    wheel_multipliers: List[int]
    wheel_sectors: List[Dict[str, Any]]
    wheel_burn_rate: Decimal
    wheel_pool_rate: Decimal
    wheel_jackpot_cap: Decimal
    wheel_free_spins_base: int
    wheel_free_spins_per_referral: int
    overclock_fortune_prices: Dict[str, Dict[str, float]] = field(default_factory=dict)
    overclock_fame_prices: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @classmethod
    def from_model(cls, row: SystemSettings) -> "SettingsSnapshot":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_cached_settings: Optional[SettingsSnapshot] = None


def invalidate_cache() -> None:
    """Drop the cached snapshot; the next read goes to the database."""
    global _cached_settings
    _cached_settings = None


class SettingsService:
    """Read and update the system settings row."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="settings_service")

    async def _get_row(self) -> SystemSettings:
        result = await self.db.execute(
            select(SystemSettings).where(SystemSettings.id == DEFAULT_SETTINGS_ID)
        )
        row = result.scalar_one_or_none()

        if row is None:
            row = SystemSettings(id=DEFAULT_SETTINGS_ID, max_global_tier=1)
            self.db.add(row)
            await self.db.flush()
            await self.db.refresh(row)
            self.logger.info("Created default system settings")

        return row

    def _remember(self, row: SystemSettings) -> SettingsSnapshot:
        global _cached_settings
        _cached_settings = SettingsSnapshot.from_model(row)
        return _cached_settings

    async def ensure_settings_exist(self) -> SettingsSnapshot:
        return self._remember(await self._get_row())

    async def get_settings(self) -> SettingsSnapshot:
        if _cached_settings is not None:
            return _cached_settings
        return await self.ensure_settings_exist()

    async def get_max_global_tier(self) -> int:
        return (await self.get_settings()).max_global_tier

    async def is_prelaunch(self) -> bool:
        current = await self.get_settings()
        if not current.is_prelaunch:
            return False
        # A scheduled end date closes prelaunch even before end_prelaunch() runs
        return current.prelaunch_ends_at is None or datetime.utcnow() < current.prelaunch_ends_at

    async def update_max_global_tier(self, max_global_tier: int) -> SettingsSnapshot:
        if max_global_tier < 1 or max_global_tier > MAX_TIER:
            raise ValidationError(
                f"max_global_tier must be between 1 and {MAX_TIER}",
                {"max_global_tier": max_global_tier}
            )
        return await self.update_settings({"max_global_tier": max_global_tier})

    async def update_settings(self, data: Dict[str, Any]) -> SettingsSnapshot:
        unknown = set(data) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown settings fields",
                {"fields": sorted(unknown)}
            )

        if "wheel_sectors" in data:
            self._check_sectors(data["wheel_sectors"])

        row = await self._get_row()
        for key, value in data.items():
            setattr(row, key, value)
        await self.db.flush()

        self.logger.info("System settings updated", fields=sorted(data))
        return self._remember(row)

    @staticmethod
    def _check_sectors(sectors: List[Dict[str, Any]]) -> None:
        if not sectors or any("sector" not in s or "chance" not in s for s in sectors):
            raise ValidationError("Every wheel sector needs a name and a chance")
        total = sum(float(s["chance"]) for s in sectors)
        if abs(total - 1.0) > 1e-6:
            raise ValidationError(
                "Wheel sector chances must add up to 1",
                {"total_chance": total}
            )

    async def end_prelaunch(self) -> Dict[str, Any]:
        """
        Leave prelaunch mode.

        Every frozen machine becomes active and its lifetime restarts now,
        so prelaunch buyers get the full lifespan.
        """
        row = await self._get_row()
        now = datetime.utcnow()

        result = await self.db.execute(
            select(Machine).where(Machine.status == MachineStatus.FROZEN.value)
        )
        machines = result.scalars().all()

        for machine in machines:
            machine.status = MachineStatus.ACTIVE.value
            machine.started_at = now
            machine.expires_at = now + timedelta(days=machine.lifespan_days)
            machine.last_calculated_at = now
            machine.last_fame_calculated_at = now

        row.is_prelaunch = False
        row.prelaunch_ends_at = now
        await self.db.flush()

        self._remember(row)
        self.logger.info("Prelaunch ended", activated_machines=len(machines))

        return {
            "activated_machines": len(machines),
            "ended_at": now,
        }
