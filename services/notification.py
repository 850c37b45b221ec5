import asyncio

import firebase_admin
from firebase_admin import credentials, messaging
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Dict, Any
from datetime import datetime
import logging
import json

from core.config import settings
from models.notification import Notification, NotificationType, DeviceToken

logger = logging.getLogger(__name__)

_firebase_app = None


def get_firebase_app():
    """Firebase app built from the configured service account, or None when push is disabled."""
    global _firebase_app
    if _firebase_app is None and settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        _firebase_app = firebase_admin.initialize_app(cred)
        logger.info("Firebase push notifications initialized")
    return _firebase_app


class NotificationService:
    """Best-effort notification sink.

    ``send_notification`` never raises: a failed notification must not fail the
    delivery transition or review that triggered it.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def send_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        notification_type: NotificationType = NotificationType.DELIVERY
    ) -> Optional[Notification]:
        """Record an in-app notification and dispatch it to the user's devices."""
        try:
            notification = Notification(
                user_id=user_id,
                title=title,
                body=body,
                type=notification_type,
                data=json.dumps(data) if data else None
            )
            self.db.add(notification)
            await self.db.commit()

            await self._dispatch_push(user_id, title, body, data)

            logger.info(f"Created notification {notification.id} for user {user_id}")
            return notification

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error sending notification to user {user_id}: {str(e)}")
            return None

    async def _dispatch_push(self, user_id: str, title: str, body: str, data: Optional[Dict[str, Any]]):
        result = await self.db.execute(
            select(DeviceToken.token).where(DeviceToken.user_id == user_id)
        )
        tokens = result.scalars().all()
        if not tokens:
            return

        app = get_firebase_app()
        if app is None:
            logger.info(f"Push disabled, skipping {len(tokens)} device(s) of user {user_id}")
            return

        payload = {key: str(value) for key, value in (data or {}).items()}
        for token in tokens:
            message = messaging.Message(
                token=token,
                notification=messaging.Notification(title=title, body=body),
                data=payload
            )
            try:
                await asyncio.to_thread(messaging.send, message, app=app)
                logger.info(f"Push notification '{title}' sent to a device of user {user_id}")
            except Exception as e:
                logger.error(f"Failed to send push notification to user {user_id}: {str(e)}")

    async def save_device_token(self, user_id: str, token: str, device_info: Optional[str] = None) -> DeviceToken:
        """Register a device push token, re-assigning it if another user held it."""
        result = await self.db.execute(select(DeviceToken).where(DeviceToken.token == token))
        device_token = result.scalar_one_or_none()

        if device_token:
            device_token.user_id = user_id
            device_token.device_info = device_info
            device_token.updated_at = datetime.utcnow()
        else:
            device_token = DeviceToken(user_id=user_id, token=token, device_info=device_info)
            self.db.add(device_token)

        await self.db.commit()
        await self.db.refresh(device_token)
        logger.info(f"Saved device token for user {user_id}")
        return device_token

    async def get_user_notifications(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False
    ) -> List[Notification]:
        """Get notifications for a user, newest first."""
        query = select(Notification).where(Notification.user_id == user_id)

        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712

        result = await self.db.execute(
            query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def get_unread_count(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read == False  # noqa: E712
            )
        )
        return result.scalar_one()

    async def mark_as_read(self, notification_id: str, user_id: str) -> bool:
        """Mark a notification as read."""
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            return False

        notification.is_read = True
        notification.read_at = datetime.utcnow()
        await self.db.commit()
        logger.info(f"Marked notification {notification_id} as read")
        return True

    @staticmethod
    def serialize(notification: Notification) -> Dict[str, Any]:
        return {
            "id": notification.id,
            "title": notification.title,
            "body": notification.body,
            "type": notification.type,
            "data": json.loads(notification.data) if notification.data else None,
            "is_read": notification.is_read,
            "read_at": notification.read_at,
            "created_at": notification.created_at,
        }
