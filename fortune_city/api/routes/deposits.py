"""
Deposit API routes, including the Helius webhook receiver.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database, get_pagination_params
from fortune_city.api.schemas.common import PaginationParams, SuccessResponse, create_success_response
from fortune_city.api.schemas.deposits import (
    ConfirmDepositRequest, ConnectWalletRequest, InitiateDepositRequest
)
from fortune_city.models.deposit import DepositStatus
from fortune_city.models.user import User
from fortune_city.services.deposit_service import DepositService
from fortune_city.services.helius_webhook_service import HeliusWebhookService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/wallet", response_model=SuccessResponse, summary="Connect a Solana wallet")
async def connect_wallet(
    request: ConnectWalletRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    connection = await DepositService(db).connect_wallet(user.id, request.wallet_address)
    return create_success_response(connection, "Wallet connected")


@router.get("/wallet", response_model=SuccessResponse, summary="Connected wallet")
async def get_wallet(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await DepositService(db).get_connected_wallet(user.id))


@router.get("/rates", response_model=SuccessResponse, summary="USD rates of deposit currencies")
async def get_rates(db: AsyncSession = Depends(get_database)):
    return create_success_response(await DepositService(db).get_rates())


@router.post("/initiate", response_model=SuccessResponse, summary="Start a wallet deposit")
async def initiate_deposit(
    request: InitiateDepositRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await DepositService(db).initiate_wallet_deposit(user.id, request.currency, request.amount)
    return create_success_response(result)


@router.post("/confirm", response_model=SuccessResponse, summary="Report the deposit signature")
async def confirm_deposit(
    request: ConfirmDepositRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    deposit = await DepositService(db).confirm_wallet_deposit(
        user.id, request.deposit_id, request.signature
    )
    message = (
        "Deposit credited"
        if deposit.status == DepositStatus.CREDITED.value
        else "Deposit is being confirmed"
    )
    return create_success_response(deposit, message)


@router.get("", response_model=SuccessResponse, summary="Deposit history")
async def get_deposits(
    pagination: PaginationParams = Depends(get_pagination_params),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    deposits = await DepositService(db).get_user_deposits(user.id, pagination.limit, pagination.offset)
    return create_success_response(deposits)


@router.post("/webhook/helius", response_model=SuccessResponse, summary="Helius transaction webhook")
async def helius_webhook(
    payload: List[Dict[str, Any]] = Body(...),
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_database)
):
    result = await HeliusWebhookService(db).handle_webhook(payload, authorization)
    return create_success_response(result)


@router.get("/{deposit_id}", response_model=SuccessResponse, summary="Deposit details")
async def get_deposit(
    deposit_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    return create_success_response(await DepositService(db).get_deposit_by_id(user.id, deposit_id))
