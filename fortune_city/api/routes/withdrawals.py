"""
Withdrawal API routes.

Wallet-connect withdrawals are prepared here, signed by the user's wallet
and confirmed with the resulting signature. Instant withdrawals pay a
typed-in address directly.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database, get_pagination_params
from fortune_city.api.schemas.common import PaginationParams, SuccessResponse, create_success_response
from fortune_city.api.schemas.withdrawals import (
    ConfirmWithdrawalRequest, WithdrawalPreviewRequest, WithdrawalRequest
)
from fortune_city.models.user import User
from fortune_city.models.withdrawal import WithdrawalStatus
from fortune_city.services.withdrawal_service import WithdrawalService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/preview", response_model=SuccessResponse, summary="Tax and payout preview")
async def preview_withdrawal(
    request: WithdrawalPreviewRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await WithdrawalService(db).preview(user.id, request.amount))


@router.post("/prepare", response_model=SuccessResponse, summary="Build a withdrawal for the wallet to sign")
async def prepare_withdrawal(
    request: WithdrawalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await WithdrawalService(db).prepare_atomic_withdrawal(
        user.id, request.amount, request.wallet_address
    )
    return create_success_response(result, "Sign the transaction in your wallet")


@router.post("/{withdrawal_id}/confirm", response_model=SuccessResponse, summary="Confirm a signed withdrawal")
async def confirm_withdrawal(
    withdrawal_id: str,
    request: ConfirmWithdrawalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    withdrawal = await WithdrawalService(db).confirm_atomic_withdrawal(
        user.id, withdrawal_id, request.signature
    )
    message = (
        "Withdrawal completed"
        if withdrawal.status == WithdrawalStatus.COMPLETED.value
        else "Withdrawal failed, balance restored"
    )
    return create_success_response(withdrawal, message)


@router.post("/{withdrawal_id}/cancel", response_model=SuccessResponse, summary="Cancel a prepared withdrawal")
async def cancel_withdrawal(
    withdrawal_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    withdrawal = await WithdrawalService(db).cancel_atomic_withdrawal(user.id, withdrawal_id)
    return create_success_response(withdrawal, "Withdrawal cancelled")


@router.post("/instant", response_model=SuccessResponse, summary="Withdraw to a typed-in address")
async def instant_withdrawal(
    request: WithdrawalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    withdrawal = await WithdrawalService(db).create_instant_withdrawal(
        user.id, request.amount, request.wallet_address
    )
    return create_success_response(withdrawal)


@router.get("", response_model=SuccessResponse, summary="Withdrawal history")
async def get_withdrawals(
    pagination: PaginationParams = Depends(get_pagination_params),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    withdrawals = await WithdrawalService(db).get_user_withdrawals(
        user.id, pagination.limit, pagination.offset
    )
    return create_success_response(withdrawals)


@router.get("/{withdrawal_id}", response_model=SuccessResponse, summary="Withdrawal details")
async def get_withdrawal(
    withdrawal_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(
        await WithdrawalService(db).get_withdrawal_by_id(user.id, withdrawal_id)
    )
