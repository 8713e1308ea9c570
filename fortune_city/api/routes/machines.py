"""
Machine API routes.
Collections, early sale and the per-machine add-ons.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database
from fortune_city.api.schemas.common import SuccessResponse, create_success_response
from fortune_city.api.schemas.machines import (
    OverclockRequest, PaymentRequest, SpeedUpRequest, machine_payload, result_payload
)
from fortune_city.core.exceptions import NotFoundError
from fortune_city.models.machine import MachineStatus
from fortune_city.models.user import User
from fortune_city.services.auto_collect_service import AutoCollectService
from fortune_city.services.machine_service import MachineService
from fortune_city.services.overclock_service import OverclockService
from fortune_city.services.pawnshop_service import PawnshopService
from fortune_city.services.risky_collect_service import RiskyCollectService
from fortune_city.services.speed_up_service import SpeedUpService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/tiers", response_model=SuccessResponse, summary="Machine tier catalogue")
async def get_tiers():
    return create_success_response(MachineService.get_tiers())


@router.get("/tiers/{tier}", response_model=SuccessResponse, summary="One machine tier")
async def get_tier(tier: int = Path(..., ge=1)):
    config = MachineService.get_tier(tier)
    if config is None:
        raise NotFoundError(f"Tier {tier} not found", {"tier": tier})
    return create_success_response(config)


@router.get("", response_model=SuccessResponse, summary="Player machines")
async def get_machines(
    status: Optional[MachineStatus] = Query(None, description="Filter by status"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    machines = await MachineService(db).get_user_machines(user.id, status)
    return create_success_response([machine_payload(m) for m in machines])


@router.get("/{machine_id}", response_model=SuccessResponse, summary="Machine details")
async def get_machine(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    machine = await MachineService(db).get_machine(machine_id, user.id)
    return create_success_response(machine_payload(machine))


@router.get("/{machine_id}/income", response_model=SuccessResponse, summary="Live coin box")
async def get_income(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    machine = await MachineService(db).get_machine(machine_id, user.id)
    return create_success_response(machine_payload(machine)["income"])


@router.post("/{machine_id}/collect", response_model=SuccessResponse, summary="Collect the coin box")
async def collect_coins(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await MachineService(db).collect_coins(machine_id, user.id)
    return create_success_response(result_payload(result), "Coins collected")


@router.get("/{machine_id}/sell-early", response_model=SuccessResponse, summary="Early sale quote")
async def get_sell_early_info(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    info = await MachineService(db).get_sell_early_info(machine_id, user.id)
    return create_success_response(info)


@router.post("/{machine_id}/sell-early", response_model=SuccessResponse, summary="Sell a machine early")
async def sell_machine_early(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await MachineService(db).sell_machine_early(machine_id, user.id)
    return create_success_response(result_payload(result), "Machine sold")


# Fortune's Gamble

@router.get("/{machine_id}/gamble", response_model=SuccessResponse, summary="Gamble level and odds")
async def get_gamble_info(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    info = await RiskyCollectService(db).get_gamble_info(machine_id, user.id)
    return create_success_response(info)


@router.post("/{machine_id}/risky-collect", response_model=SuccessResponse, summary="Double or half")
async def risky_collect(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await RiskyCollectService(db).risky_collect(machine_id, user.id)
    return create_success_response(result_payload(result))


@router.post("/{machine_id}/gamble/upgrade", response_model=SuccessResponse, summary="Improve gamble odds")
async def upgrade_gamble(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await RiskyCollectService(db).upgrade_gamble_level(machine_id, user.id)
    return create_success_response(result_payload(result), "Gamble level upgraded")


# Collector

@router.get("/{machine_id}/auto-collect", response_model=SuccessResponse, summary="Collector status")
async def get_auto_collect_info(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    info = await AutoCollectService(db).get_auto_collect_info(machine_id, user.id)
    return create_success_response(info)


@router.post("/{machine_id}/auto-collect", response_model=SuccessResponse, summary="Hire a collector")
async def hire_collector(
    machine_id: str,
    request: PaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await AutoCollectService(db).hire_collector(machine_id, user.id, request.payment_method)
    return create_success_response(result_payload(result), "Collector hired")


# Overclock

@router.get("/{machine_id}/overclock", response_model=SuccessResponse, summary="Overclock prices")
async def get_overclock_info(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    info = await OverclockService(db).get_overclock_info(machine_id, user.id)
    return create_success_response(info)


@router.post("/{machine_id}/overclock", response_model=SuccessResponse, summary="Buy an overclock")
async def purchase_overclock(
    machine_id: str,
    request: OverclockRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await OverclockService(db).purchase_overclock(
        machine_id, user.id, request.level, request.payment_method
    )
    return create_success_response(result_payload(result), "Overclock applied")


# Speed-up

@router.get("/{machine_id}/speed-up", response_model=SuccessResponse, summary="Speed-up options")
async def get_speed_up_info(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    info = await SpeedUpService(db).get_speed_up_info(machine_id, user.id)
    return create_success_response(info)


@router.post("/{machine_id}/speed-up", response_model=SuccessResponse, summary="Shorten the lifespan")
async def speed_up(
    machine_id: str,
    request: SpeedUpRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await SpeedUpService(db).speed_up(
        machine_id, user.id, request.days, request.payment_method
    )
    return create_success_response(result_payload(result), "Machine sped up")


# Pawnshop

@router.get("/{machine_id}/pawnshop", response_model=SuccessResponse, summary="Pawnshop quote")
async def get_pawnshop_info(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    info = await PawnshopService(db).get_pawnshop_info(machine_id, user.id)
    return create_success_response(info)


@router.post("/{machine_id}/pawnshop", response_model=SuccessResponse, summary="Sell to the pawnshop")
async def sell_to_pawnshop(
    machine_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await PawnshopService(db).sell_to_pawnshop(machine_id, user.id)
    return create_success_response(result_payload(result), "Machine pawned")
