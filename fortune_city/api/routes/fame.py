"""
Fame API routes.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database
from fortune_city.api.schemas.common import SuccessResponse, create_success_response
from fortune_city.api.schemas.machines import TierRequest
from fortune_city.models.user import User
from fortune_city.services.fame_service import FameService
from fortune_city.services.lookups import get_user_or_raise

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("", response_model=SuccessResponse, summary="Fame balance and streak")
async def get_fame(user: User = Depends(get_current_user)):
    return create_success_response(FameService.get_balance(user))


@router.get("/history", response_model=SuccessResponse, summary="Fame ledger")
async def get_fame_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await FameService(db).get_history(user.id, page, limit))


@router.post("/daily-login", response_model=SuccessResponse, summary="Claim the daily login reward")
async def claim_daily_login(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    locked = await get_user_or_raise(db, user.id, for_update=True)
    result = await FameService(db).claim_daily_login(locked)
    return create_success_response(result, f"Day {result['streak']} login claimed")


@router.post("/unlock-tier", response_model=SuccessResponse, summary="Unlock the next tier with Fame")
async def unlock_tier(
    request: TierRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    locked = await get_user_or_raise(db, user.id, for_update=True)
    result = await FameService(db).unlock_tier_with_fame(locked, request.tier)
    return create_success_response(result, "Tier unlocked")
