from typing import List, Optional, Tuple
import logging

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.exceptions import (
    AuthorizationError,
    ConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from models.delivery import Delivery, DeliveryStatus
from models.message import Message
from models.notification import NotificationType
from schemas.chat import MessageResponse
from services.notification import NotificationService

logger = logging.getLogger(__name__)


def chat_room(delivery_id: str) -> str:
    return f"delivery-{delivery_id}"


class ChatService:
    """Persistence side of delivery chat: access checks, messages and history."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_delivery(self, delivery_id: str) -> Delivery:
        result = await self.db.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise ResourceNotFoundError("Delivery", delivery_id)
        return delivery

    async def ensure_chat_access(self, delivery_id: str, user_id: str) -> Delivery:
        """Chat is open to both participants once a carrier is assigned and until cancellation."""
        delivery = await self._get_delivery(delivery_id)

        if not delivery.is_participant(user_id):
            raise AuthorizationError("Only the sender and carrier can chat about this delivery")

        if delivery.status == DeliveryStatus.REQUESTED:
            raise ConflictError("Chat is available once the delivery has been accepted")
        if delivery.status == DeliveryStatus.CANCELLED:
            raise ConflictError("Chat is closed for cancelled deliveries")

        return delivery

    async def send_message(
        self,
        delivery_id: str,
        sender_id: str,
        text: Optional[str] = None,
        attachment_path: Optional[str] = None,
        attachment_type: Optional[str] = None
    ) -> MessageResponse:
        """Persist a message from one participant to the other."""
        text = (text or "").strip()
        if not text and not attachment_path:
            raise ValidationError("Message text or an attachment is required", field="message")

        delivery = await self.ensure_chat_access(delivery_id, sender_id)
        receiver_id = delivery.counterpart_of(sender_id)

        message = Message(
            delivery_id=delivery_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            message=text,
            attachment_path=attachment_path,
            attachment_type=attachment_type if attachment_path else None
        )
        self.db.add(message)
        await self.db.commit()

        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.id == message.id)
            .execution_options(populate_existing=True)
        )
        response = MessageResponse.model_validate(result.scalar_one())
        logger.info(f"Message {response.id} stored for delivery {delivery_id}")

        await NotificationService(self.db).send_notification(
            receiver_id,
            title="New Message",
            body=text[:100] if text else "Sent an attachment",
            data={"delivery_id": delivery_id, "message_id": response.id, "type": "chat_message"},
            notification_type=NotificationType.CHAT
        )
        return response

    async def fetch_message_history(
        self,
        delivery_id: str,
        user_id: str,
        before: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Tuple[List[MessageResponse], bool]:
        """One page of history, oldest first, plus whether older messages exist.

        ``before`` is a message id; the page then holds the messages that
        precede it.
        """
        limit = limit or settings.CHAT_PAGE_SIZE
        delivery = await self._get_delivery(delivery_id)

        if not delivery.is_participant(user_id):
            raise AuthorizationError("Only the sender and carrier can read this chat")

        query = (
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.delivery_id == delivery_id)
            .execution_options(populate_existing=True)
        )

        if before is not None:
            cursor_result = await self.db.execute(
                select(Message.created_at, Message.id).where(
                    Message.id == before,
                    Message.delivery_id == delivery_id
                )
            )
            cursor = cursor_result.first()
            if cursor is None:
                raise ValidationError("Unknown message cursor", field="before")

            query = query.where(
                or_(
                    Message.created_at < cursor.created_at,
                    and_(Message.created_at == cursor.created_at, Message.id < cursor.id)
                )
            )

        # Newest page first, then flipped to chronological order
        result = await self.db.execute(
            query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit + 1)
        )
        rows = list(result.scalars().all())
        has_more = len(rows) > limit
        rows = rows[:limit]
        rows.reverse()

        return [MessageResponse.model_validate(m) for m in rows], has_more
