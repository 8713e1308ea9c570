"""
Wheel of Fortune API routes.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database
from fortune_city.api.schemas.common import SuccessResponse, create_success_response
from fortune_city.api.schemas.wheel import SpinRequest
from fortune_city.constants.wheel import RECENT_WINS_LIMIT
from fortune_city.models.user import User
from fortune_city.services.wheel_service import WheelService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/spin", response_model=SuccessResponse, summary="Spin the wheel")
async def spin(
    request: SpinRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await WheelService(db).spin(user.id, request.multiplier))


@router.get("/state", response_model=SuccessResponse, summary="Wheel state for the player")
async def get_state(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await WheelService(db).get_state(user.id))


@router.get("/history", response_model=SuccessResponse, summary="Player spin history")
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await WheelService(db).get_history(user.id, page, limit))


@router.get("/jackpot", response_model=SuccessResponse, summary="Jackpot pool")
async def get_jackpot(db: AsyncSession = Depends(get_database)):
    return create_success_response(await WheelService(db).get_jackpot_info())


@router.get("/recent-wins", response_model=SuccessResponse, summary="Latest wins, names masked")
async def get_recent_wins(
    limit: int = Query(RECENT_WINS_LIMIT, ge=1, le=50),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await WheelService(db).get_recent_wins(limit))
