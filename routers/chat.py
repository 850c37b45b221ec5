from typing import Optional
from fastapi import APIRouter, Depends, File, Query, UploadFile, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.config import settings
from database.connection import get_db, SessionLocal
from routers.auth import get_current_user, resolve_user_from_token
from schemas.chat import AttachmentResponse, MessageCreate, MessageHistory, MessageResponse
from schemas.user import UserResponse
from services.attachments import store_attachment, validate_attachment
from services.chat import ChatService
from services.chat_gateway import ChatConnectionManager, ChatGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

# Global connection registry and gateway
manager = ChatConnectionManager()
chat_gateway = ChatGateway(manager, SessionLocal)

@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    WebSocket endpoint for delivery chat
    """
    connection_id = None

    try:
        # Authenticate user from token
        if not token:
            await websocket.close(code=4001, reason="Authentication required")
            return

        async with chat_gateway.session_factory() as db:
            user = await resolve_user_from_token(token, db)

        if user is None:
            await websocket.close(code=4001, reason="Invalid token")
            return

        connection_id = await manager.connect(websocket, user.id)

        # Listen for events
        while True:
            message = await websocket.receive_text()
            await chat_gateway.handle_event(connection_id, user.id, message)

    except WebSocketDisconnect:
        logger.info(f"Chat WebSocket disconnected: {connection_id}")
    except Exception as e:
        logger.error(f"Chat WebSocket error: {str(e)}")
    finally:
        if connection_id:
            manager.disconnect(connection_id)

@router.get("/api/deliveries/{delivery_id}/messages", response_model=MessageHistory)
async def get_messages(
    delivery_id: str,
    before: Optional[int] = Query(None, description="Return messages older than this message id"),
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Chat history for a delivery, oldest first"""
    messages, has_more = await ChatService(db).fetch_message_history(
        delivery_id,
        current_user.id,
        before=before
    )
    return MessageHistory(messages=messages, has_more=has_more)

@router.post("/api/deliveries/{delivery_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def post_message(
    delivery_id: str,
    message_data: MessageCreate,
    current_user: UserResponse = Depends(get_current_user)
):
    """Send a chat message; connected room members receive it live"""
    return await chat_gateway.deliver_message(
        delivery_id,
        current_user.id,
        text=message_data.message,
        attachment_path=message_data.attachment_path,
        attachment_type=message_data.attachment_type
    )

@router.post("/api/deliveries/{delivery_id}/upload", response_model=AttachmentResponse, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    delivery_id: str,
    file: UploadFile = File(...),
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Upload an image to reference from a chat message"""
    await ChatService(db).ensure_chat_access(delivery_id, current_user.id)

    if file.size:
        validate_attachment(file.filename, file.content_type, file.size)

    # Never buffer more than one byte past the limit
    content = await file.read(settings.MAX_ATTACHMENT_SIZE + 1)
    return store_attachment(content, file.filename, file.content_type, delivery_id)
