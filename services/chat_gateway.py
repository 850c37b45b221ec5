import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, Set, Any, Callable
from datetime import datetime
from fastapi import WebSocket
import uuid

from core.exceptions import BaseCustomException
from services.chat import ChatService, chat_room

logger = logging.getLogger(__name__)

class ChatConnectionManager:
    """
    WebSocket connection registry for delivery chat rooms
    """

    def __init__(self):
        # Store active connections with metadata
        self.active_connections: Dict[str, Dict] = {}
        # Room name -> connection ids
        self.rooms: Dict[str, Set[str]] = {}
        # Store user sessions
        self.user_sessions: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> str:
        """Accept WebSocket connection and register it"""
        await websocket.accept()

        connection_id = str(uuid.uuid4())

        self.active_connections[connection_id] = {
            "websocket": websocket,
            "user_id": user_id,
            "delivery_ids": set(),
            "connected_at": datetime.utcnow(),
            "last_activity": datetime.utcnow()
        }

        if user_id not in self.user_sessions:
            self.user_sessions[user_id] = set()
        self.user_sessions[user_id].add(connection_id)

        logger.info(f"Chat connection established: {connection_id} for user {user_id}")

        await self.send_personal_message(connection_id, {
            "type": "connection_established",
            "connection_id": connection_id,
            "user_id": user_id,
            "timestamp": datetime.utcnow().isoformat()
        })

        return connection_id

    def disconnect(self, connection_id: str):
        """Remove connection from every room it joined"""
        connection_info = self.active_connections.pop(connection_id, None)
        if not connection_info:
            return

        for delivery_id in connection_info["delivery_ids"]:
            self._discard_from_room(chat_room(delivery_id), connection_id)

        user_id = connection_info["user_id"]
        if user_id in self.user_sessions:
            self.user_sessions[user_id].discard(connection_id)
            if not self.user_sessions[user_id]:
                del self.user_sessions[user_id]

        logger.info(f"Chat connection closed: {connection_id}")

    def join_room(self, connection_id: str, delivery_id: str):
        if connection_id not in self.active_connections:
            return
        self.rooms.setdefault(chat_room(delivery_id), set()).add(connection_id)
        self.active_connections[connection_id]["delivery_ids"].add(delivery_id)

    def leave_room(self, connection_id: str, delivery_id: str):
        self._discard_from_room(chat_room(delivery_id), connection_id)
        if connection_id in self.active_connections:
            self.active_connections[connection_id]["delivery_ids"].discard(delivery_id)

    def _discard_from_room(self, room: str, connection_id: str):
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[room]

    def room_members(self, delivery_id: str) -> Set[str]:
        return set(self.rooms.get(chat_room(delivery_id), set()))

    async def send_personal_message(self, connection_id: str, message: Dict):
        """Send message to specific connection"""
        if connection_id in self.active_connections:
            try:
                websocket = self.active_connections[connection_id]["websocket"]
                await websocket.send_text(json.dumps(message, default=str))

                self.active_connections[connection_id]["last_activity"] = datetime.utcnow()
            except Exception as e:
                logger.error(f"Error sending message to {connection_id}: {str(e)}")
                self.disconnect(connection_id)

    async def broadcast_to_room(self, delivery_id: str, message: Dict):
        """Broadcast message to every connection in a delivery room"""
        for connection_id in sorted(self.room_members(delivery_id)):
            await self.send_personal_message(connection_id, message)


class ChatGateway:
    """
    Handles chat events arriving on a WebSocket connection.

    Every event opens its own database session, so access is re-derived from
    the store each time. Sends for one delivery hold that delivery's lock
    across persist and broadcast, which keeps broadcast order equal to
    persistence order.
    """

    def __init__(self, connection_manager: ChatConnectionManager, session_factory: Callable):
        self.manager = connection_manager
        self.session_factory = session_factory
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self.event_handlers = {
            "join_chat": self.join_chat,
            "leave_chat": self.leave_chat,
            "send_message": self.send_message,
            "ping": self.ping,
        }

    @asynccontextmanager
    async def _delivery_lock(self, delivery_id: str):
        """Serialize sends for one delivery; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(delivery_id, asyncio.Lock())
        self._lock_users[delivery_id] = self._lock_users.get(delivery_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[delivery_id] -= 1
            if not self._lock_users[delivery_id]:
                del self._lock_users[delivery_id]
                del self._locks[delivery_id]

    async def send_error(self, connection_id: str, event: str, message: str):
        await self.manager.send_personal_message(connection_id, {
            "type": "error",
            "event": event,
            "message": message,
            "timestamp": datetime.utcnow().isoformat()
        })

    async def handle_event(self, connection_id: str, user_id: str, raw_message: str):
        """Dispatch one client frame: ``{"event": ..., "data": {...}}``."""
        try:
            payload = json.loads(raw_message)
        except json.JSONDecodeError:
            await self.send_error(connection_id, "unknown", "Invalid JSON payload")
            return

        if not isinstance(payload, dict):
            await self.send_error(connection_id, "unknown", "Invalid event payload")
            return

        event = payload.get("event") or payload.get("type") or "unknown"
        data = payload.get("data") or {}
        handler = self.event_handlers.get(event)

        if handler is None:
            await self.send_error(connection_id, event, f"Unknown event: {event}")
            return

        if not isinstance(data, dict):
            await self.send_error(connection_id, event, "Event data must be an object")
            return

        try:
            await handler(connection_id, user_id, data)
        except BaseCustomException as e:
            logger.warning(f"Chat event {event} rejected for user {user_id}: {e.message}")
            await self.send_error(connection_id, event, e.message)
        except Exception as e:
            logger.error(f"Error handling chat event {event}: {str(e)}")
            await self.send_error(connection_id, event, "Internal server error")

    async def join_chat(self, connection_id: str, user_id: str, data: Dict[str, Any]):
        delivery_id = data.get("delivery_id")
        if not delivery_id:
            await self.send_error(connection_id, "join_chat", "delivery_id is required")
            return

        async with self.session_factory() as db:
            await ChatService(db).ensure_chat_access(delivery_id, user_id)

        self.manager.join_room(connection_id, delivery_id)
        logger.info(f"Connection {connection_id} joined {chat_room(delivery_id)}")

        await self.manager.send_personal_message(connection_id, {
            "type": "joined_chat",
            "delivery_id": delivery_id,
            "room": chat_room(delivery_id),
            "timestamp": datetime.utcnow().isoformat()
        })

    async def leave_chat(self, connection_id: str, user_id: str, data: Dict[str, Any]):
        delivery_id = data.get("delivery_id")
        if not delivery_id:
            await self.send_error(connection_id, "leave_chat", "delivery_id is required")
            return

        self.manager.leave_room(connection_id, delivery_id)
        await self.manager.send_personal_message(connection_id, {
            "type": "left_chat",
            "delivery_id": delivery_id,
            "timestamp": datetime.utcnow().isoformat()
        })

    async def send_message(self, connection_id: str, user_id: str, data: Dict[str, Any]):
        delivery_id = data.get("delivery_id")
        if not delivery_id:
            await self.send_error(connection_id, "send_message", "delivery_id is required")
            return

        await self.deliver_message(
            delivery_id,
            user_id,
            text=data.get("message"),
            attachment_path=data.get("attachment_path"),
            attachment_type=data.get("attachment_type")
        )

    async def deliver_message(self, delivery_id: str, user_id: str, text=None,
                              attachment_path=None, attachment_type=None):
        """Persist then broadcast; shared by the socket and the REST route."""
        async with self._delivery_lock(delivery_id):
            async with self.session_factory() as db:
                message = await ChatService(db).send_message(
                    delivery_id,
                    user_id,
                    text=text,
                    attachment_path=attachment_path,
                    attachment_type=attachment_type
                )

            await self.manager.broadcast_to_room(delivery_id, {
                "type": "receive_message",
                "delivery_id": delivery_id,
                "message": message.model_dump(mode="json")
            })
        return message

    async def ping(self, connection_id: str, user_id: str, data: Dict[str, Any]):
        await self.manager.send_personal_message(connection_id, {
            "type": "pong",
            "timestamp": datetime.utcnow().isoformat()
        })
