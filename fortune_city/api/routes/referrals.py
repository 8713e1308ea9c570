"""
Referral system API routes.
Handles referral stats, the referral list, milestones and moving referral
earnings into the fortune balance.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database, get_pagination_params
from fortune_city.api.schemas.common import PaginationParams, SuccessResponse, create_success_response
from fortune_city.api.schemas.referrals import SetReferrerRequest, WithdrawReferralRequest
from fortune_city.models.user import User
from fortune_city.services.referral_service import ReferralService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/stats", response_model=SuccessResponse, summary="Referral statistics by level")
async def get_referral_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await ReferralService(db).get_referral_stats(user.id))


@router.get("/list", response_model=SuccessResponse, summary="Direct referrals")
async def get_referral_list(
    pagination: PaginationParams = Depends(get_pagination_params),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    referrals = await ReferralService(db).get_referral_list(
        user.id, pagination.limit, pagination.offset
    )
    return create_success_response(referrals)


@router.get("/chain", response_model=SuccessResponse, summary="Referrers above the player")
async def get_referral_chain(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await ReferralService(db).get_referral_chain(user.id))


@router.post("/referrer", response_model=SuccessResponse, summary="Enter a referral code")
async def set_referrer(
    request: SetReferrerRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    updated = await ReferralService(db).set_referrer(user.id, request.referral_code)
    return create_success_response({"referred_by_id": updated.referred_by_id}, "Referrer set")


@router.post("/withdraw", response_model=SuccessResponse, summary="Move referral balance to fortune")
async def withdraw_referral_balance(
    request: WithdrawReferralRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    updated = await ReferralService(db).withdraw_referral_balance(user.id, request.amount)
    return create_success_response({
        "fortune_balance": updated.fortune_balance,
        "referral_balance": updated.referral_balance,
    })


@router.get("/milestones", response_model=SuccessResponse, summary="Milestone progress")
async def get_milestones(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await ReferralService(db).get_milestone_progress(user.id))


@router.post("/milestones/{milestone_id}/claim", response_model=SuccessResponse, summary="Claim a milestone")
async def claim_milestone(
    milestone_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await ReferralService(db).claim_milestone(user.id, milestone_id)
    return create_success_response(result, "Milestone claimed")
