"""
System settings routes. Reads are public, changes need an admin.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_admin_user, get_database
from fortune_city.api.schemas.common import SuccessResponse, create_success_response
from fortune_city.api.schemas.settings import MaxTierRequest, SettingsUpdateRequest
from fortune_city.models.user import User
from fortune_city.services.settings_service import SettingsService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("", response_model=SuccessResponse, summary="Current game settings")
async def get_settings(db: AsyncSession = Depends(get_database)):
    service = SettingsService(db)
    current = (await service.get_settings()).to_dict()
    current["is_prelaunch"] = await service.is_prelaunch()
    return create_success_response(current)


@router.patch("", response_model=SuccessResponse, summary="Update settings")
async def update_settings(
    request: SettingsUpdateRequest,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_database)
):
    changes = request.model_dump(exclude_unset=True)
    updated = await SettingsService(db).update_settings(changes)
    logger.info("Settings changed by admin", admin_id=admin.id, fields=sorted(changes))
    return create_success_response(updated.to_dict(), "Settings updated")


@router.put("/max-tier", response_model=SuccessResponse, summary="Open tiers globally")
async def update_max_global_tier(
    request: MaxTierRequest,
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_database)
):
    updated = await SettingsService(db).update_max_global_tier(request.max_global_tier)
    return create_success_response({"max_global_tier": updated.max_global_tier})


@router.post("/end-prelaunch", response_model=SuccessResponse, summary="Leave prelaunch mode")
async def end_prelaunch(
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_database)
):
    result = await SettingsService(db).end_prelaunch()
    logger.info("Prelaunch ended by admin", admin_id=admin.id)
    return create_success_response(result, "Prelaunch ended")
