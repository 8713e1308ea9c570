"""
Economy API routes: machine purchases, tier unlocks and the ledger.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database, get_pagination_params
from fortune_city.api.schemas.common import (
    PaginatedResponse, PaginationParams, SuccessResponse,
    create_paginated_response, create_success_response
)
from fortune_city.api.schemas.machines import PurchaseMachineRequest, TierRequest, result_payload
from fortune_city.models.transaction import TransactionType
from fortune_city.models.user import User
from fortune_city.services.purchase_service import PurchaseService
from fortune_city.services.tier_unlock_service import TierUnlockService
from fortune_city.services.transaction_service import TransactionService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post(
    "/purchase",
    response_model=SuccessResponse,
    summary="Buy a machine",
    description="Paid from bonus, then fortune, then referral balance"
)
async def purchase_machine(
    request: PurchaseMachineRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await PurchaseService(db).purchase_machine(user.id, request.tier)
    return create_success_response(result_payload(result), "Machine purchased")


@router.get("/can-afford/{tier}", response_model=SuccessResponse, summary="Affordability check")
async def can_afford_tier(
    tier: int = Path(..., ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await PurchaseService(db).can_afford_tier(user.id, tier))


@router.get("/purchases", response_model=SuccessResponse, summary="Purchase history")
async def get_purchase_history(
    pagination: PaginationParams = Depends(get_pagination_params),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    purchases = await PurchaseService(db).get_purchase_history(
        user.id, pagination.limit, pagination.offset
    )
    return create_success_response(purchases)


@router.get("/tier-unlock/{tier}", response_model=SuccessResponse, summary="Tier unlock price")
async def get_tier_unlock_info(
    tier: int = Path(..., ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await TierUnlockService(db).get_tier_unlock_info(user.id, tier))


@router.post("/tier-unlock", response_model=SuccessResponse, summary="Unlock the next tier for a fee")
async def purchase_tier_unlock(
    request: TierRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await TierUnlockService(db).purchase_tier_unlock(user.id, request.tier)
    return create_success_response(result, "Tier unlocked")


@router.get("/transactions", response_model=PaginatedResponse, summary="Ledger entries")
async def get_transactions(
    type: Optional[TransactionType] = Query(None, description="Filter by transaction type"),
    pagination: PaginationParams = Depends(get_pagination_params),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    service = TransactionService(db)
    items = await service.get_user_transactions(
        user.id, type=type, limit=pagination.limit, offset=pagination.offset
    )
    total = await service.count_user_transactions(user.id, type=type)
    return create_paginated_response(items, total, pagination.limit, pagination.offset)


@router.get("/transactions/stats", response_model=SuccessResponse, summary="Ledger totals")
async def get_transaction_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await TransactionService(db).get_stats(user.id))
