"""
Player API routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database
from fortune_city.api.schemas.common import SuccessResponse, create_success_response
from fortune_city.models.user import User
from fortune_city.services.user_service import UserService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/me",
    response_model=SuccessResponse,
    summary="Current player profile",
    description="Balances, unlocked tiers and the effective withdrawal tax"
)
async def get_me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    profile = await UserService(db).get_profile(user.id)
    return create_success_response(profile)


@router.get(
    "/me/stats",
    response_model=SuccessResponse,
    summary="Current player statistics"
)
async def get_my_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    """Machines by status and lifetime totals."""
    stats = await UserService(db).get_stats(user.id)
    return create_success_response(stats)
