from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.response import success_response
from database.connection import get_db
from routers.auth import get_current_user
from schemas.notification import DeviceTokenCreate, NotificationList, NotificationResponse
from schemas.user import UserResponse
from services.notification import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

@router.post("/device-token")
async def register_device_token(
    token_data: DeviceTokenCreate,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Register a device push token for the current user"""
    device_token = await NotificationService(db).save_device_token(
        current_user.id,
        token_data.token,
        token_data.device_info
    )
    return success_response(
        data={"id": device_token.id, "token": device_token.token},
        message="Device token saved successfully"
    )

@router.get("", response_model=NotificationList)
async def get_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    unread_only: bool = Query(False),
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get the current user's notifications, newest first"""
    service = NotificationService(db)
    notifications = await service.get_user_notifications(
        current_user.id,
        limit=limit,
        offset=offset,
        unread_only=unread_only
    )
    unread_count = await service.get_unread_count(current_user.id)

    return NotificationList(
        notifications=[NotificationResponse(**NotificationService.serialize(n)) for n in notifications],
        unread_count=unread_count
    )

@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Mark a notification as read"""
    marked = await NotificationService(db).mark_as_read(notification_id, current_user.id)
    if not marked:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )
    return success_response(data={"id": notification_id}, message="Notification marked as read")
