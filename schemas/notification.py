from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from models.notification import NotificationType


class DeviceTokenCreate(BaseModel):
    token: str = Field(..., min_length=1, max_length=500)
    device_info: Optional[str] = Field(None, max_length=255)


class NotificationResponse(BaseModel):
    id: str
    title: str
    body: str
    type: NotificationType
    data: Optional[dict] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationList(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
