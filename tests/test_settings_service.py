"""
Tests for the system settings row and its in-process cache.
"""

from decimal import Decimal

import pytest

from fortune_city.core.exceptions import ValidationError
from fortune_city.models.settings import DEFAULT_SETTINGS_ID, SystemSettings
from fortune_city.services import settings_service
from fortune_city.services.settings_service import SettingsService


async def test_defaults_created_on_demand(session):
    current = await SettingsService(session).get_settings()

    assert current.max_global_tier == 1
    assert current.is_prelaunch is False
    assert current.min_withdrawal_amount == Decimal(1)
    assert current.wheel_bet_amount == Decimal(1)
    assert current.wheel_multipliers == [1, 5, 50]
    assert current.wheel_free_spins_base == 3
    assert current.overclock_fortune_prices == {}

    assert await session.get(SystemSettings, DEFAULT_SETTINGS_ID) is not None


async def test_update_settings(session):
    service = SettingsService(session)

    updated = await service.update_settings({"wheel_bet_amount": Decimal(2), "is_prelaunch": True})

    assert updated.wheel_bet_amount == Decimal(2)
    assert updated.is_prelaunch is True
    assert await service.is_prelaunch() is True


async def test_update_settings_rejects_unknown_fields(session):
    with pytest.raises(ValidationError, match="Unknown settings fields") as exc_info:
        await SettingsService(session).update_settings({"jackpot_pool": 5})

    assert exc_info.value.details == {"fields": ["jackpot_pool"]}


@pytest.mark.parametrize("sectors", [
    [],
    [{"sector": "x2", "chance": 0.5}, {"sector": "empty", "chance": 0.4}],
    [{"sector": "x2"}],
])
async def test_wheel_sectors_are_checked(session, sectors):
    with pytest.raises(ValidationError):
        await SettingsService(session).update_settings({"wheel_sectors": sectors})


async def test_valid_wheel_sectors(session):
    sectors = [{"sector": "x2", "chance": 0.25}, {"sector": "empty", "chance": 0.75}]

    updated = await SettingsService(session).update_settings({"wheel_sectors": sectors})

    assert updated.wheel_sectors == sectors


@pytest.mark.parametrize("tier", [0, 11])
async def test_max_global_tier_range(session, tier):
    with pytest.raises(ValidationError, match="max_global_tier"):
        await SettingsService(session).update_max_global_tier(tier)


async def test_max_global_tier(session):
    service = SettingsService(session)

    await service.update_max_global_tier(4)

    assert await service.get_max_global_tier() == 4


async def test_cache_survives_direct_row_changes(session):
    service = SettingsService(session)
    await service.get_settings()

    row = await session.get(SystemSettings, DEFAULT_SETTINGS_ID)
    row.max_global_tier = 7
    await session.flush()

    assert await service.get_max_global_tier() == 1

    settings_service.invalidate_cache()
    assert await service.get_max_global_tier() == 7
