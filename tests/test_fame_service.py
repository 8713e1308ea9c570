"""
Tests for Fame earning, spending and tier unlocks.
"""

from datetime import datetime, timedelta

import pytest

from fortune_city.core.exceptions import (
    ConflictError, InsufficientFameError, InsufficientFundsError, ValidationError
)
from fortune_city.models import FameSource
from fortune_city.services.fame_service import FameService, utc_date_string
from fortune_city.services.tier_unlock_service import TierUnlockService


async def test_daily_login_starts_streak(session, make_user):
    user = await make_user()

    result = await FameService(session).claim_daily_login(user)

    assert result == {"earned": 15, "streak": 1, "total_fame": 15}
    assert user.last_login_date == utc_date_string(datetime.utcnow())


async def test_daily_login_twice_same_day(session, make_user):
    user = await make_user()
    service = FameService(session)
    await service.claim_daily_login(user)

    with pytest.raises(ConflictError):
        await service.claim_daily_login(user)


async def test_daily_login_continues_streak(session, make_user):
    yesterday = utc_date_string(datetime.utcnow() - timedelta(days=1))
    user = await make_user(login_streak=4, last_login_date=yesterday)

    result = await FameService(session).claim_daily_login(user)

    assert result["streak"] == 5
    assert result["earned"] == 15 + 8


async def test_daily_login_resets_broken_streak(session, make_user):
    long_ago = utc_date_string(datetime.utcnow() - timedelta(days=5))
    user = await make_user(login_streak=9, last_login_date=long_ago)

    result = await FameService(session).claim_daily_login(user)

    assert result["streak"] == 1
    assert result["earned"] == 15


async def test_earning_auto_unlocks_tier(session, make_user):
    user = await make_user(total_fame_earned=240)

    await FameService(session).earn_fame(user, 20, FameSource.DAILY_LOGIN)

    assert user.fame == 20
    assert user.total_fame_earned == 260
    assert user.max_tier_unlocked == 2


async def test_spending_never_lowers_lifetime_fame(session, make_user):
    user = await make_user(fame=100, total_fame_earned=100)
    service = FameService(session)

    assert await service.spend_fame(user, 60, FameSource.SPEED_UP) == 40
    assert user.total_fame_earned == 100

    with pytest.raises(InsufficientFameError):
        await service.spend_fame(user, 41, FameSource.SPEED_UP)

    with pytest.raises(ValidationError):
        await service.spend_fame(user, 0, FameSource.SPEED_UP)


async def test_unlock_next_tier_with_fame(session, make_user):
    user = await make_user(fame=300, total_fame_earned=100)
    service = FameService(session)

    result = await service.unlock_tier_with_fame(user, 2)

    assert result["cost"] == 250
    assert result["remaining_fame"] == 50
    assert user.max_tier_unlocked == 2

    with pytest.raises(ValidationError, match="Next unlock: 3"):
        await service.unlock_tier_with_fame(user, 4)


async def test_unlock_tier_needs_enough_fame(session, make_user):
    user = await make_user(fame=100)

    with pytest.raises(InsufficientFameError):
        await FameService(session).unlock_tier_with_fame(user, 2)
    assert user.max_tier_unlocked == 1


async def test_history_is_paginated(session, make_user):
    user = await make_user()
    service = FameService(session)
    for _ in range(3):
        await service.earn_fame(user, 5, FameSource.MANUAL_COLLECT)

    page = await service.get_history(user.id, page=1, limit=2)
    assert page["total"] == 3
    assert len(page["items"]) == 2
    assert all(item.amount == 5 for item in page["items"])


async def test_tier_unlock_for_fee(session, make_user):
    user = await make_user(fortune_balance=5)
    service = TierUnlockService(session)

    info = await service.get_tier_unlock_info(user.id, 2)
    assert info["can_unlock"] is True
    assert float(info["fee"]) == pytest.approx(3)

    result = await service.purchase_tier_unlock(user.id, 2)
    assert result["max_tier_unlocked"] == 2
    assert float(user.fortune_balance) == pytest.approx(2)

    with pytest.raises(ValidationError, match="already unlocked"):
        await service.purchase_tier_unlock(user.id, 2)


async def test_tier_unlock_fee_needs_funds(session, make_user):
    user = await make_user(fortune_balance=1)

    with pytest.raises(InsufficientFundsError):
        await TierUnlockService(session).purchase_tier_unlock(user.id, 2)
