"""
In-app notification routes.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from fortune_city.api.dependencies import get_current_user, get_database
from fortune_city.api.schemas.common import SuccessResponse, create_success_response
from fortune_city.models.user import User
from fortune_city.services.notification_service import NotificationService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("", response_model=SuccessResponse, summary="Notifications, newest first")
async def get_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    result = await NotificationService(db).get_notifications(user.id, unread_only, limit, offset)
    return create_success_response(result)


@router.get("/unread-count", response_model=SuccessResponse, summary="Unread notification count")
async def get_unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    count = await NotificationService(db).get_unread_count(user.id)
    return create_success_response({"unread_count": count})


@router.post("/read-all", response_model=SuccessResponse, summary="Mark everything read")
async def mark_all_as_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    updated = await NotificationService(db).mark_all_as_read(user.id)
    return create_success_response({"updated": updated})


@router.post("/{notification_id}/read", response_model=SuccessResponse, summary="Mark one read")
async def mark_as_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database)
):
    notification = await NotificationService(db).mark_as_read(notification_id, user.id)
    return create_success_response(notification)
