import asyncio
import json

import pytest

from core.config import settings
from core.exceptions import AuthorizationError, ConflictError, ValidationError
from services.chat import ChatService, chat_room
from services.chat_gateway import ChatConnectionManager, ChatGateway


class FakeWebSocket:
    def __init__(self):
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        self.sent.append(json.loads(text))

    def events(self, event_type):
        return [m for m in self.sent if m["type"] == event_type]


class TestChatAccess:
    async def test_requested_delivery_has_no_chat(self, db, requested_delivery, sender):
        with pytest.raises(ConflictError):
            await ChatService(db).ensure_chat_access(requested_delivery.id, sender.id)

    async def test_participants_can_chat_after_acceptance(self, db, accepted_delivery, sender, carrier):
        service = ChatService(db)
        for user_id in (sender.id, carrier.id):
            delivery = await service.ensure_chat_access(accepted_delivery.id, user_id)
            assert delivery.id == accepted_delivery.id

    async def test_outsider_is_rejected(self, db, accepted_delivery, outsider):
        with pytest.raises(AuthorizationError):
            await ChatService(db).ensure_chat_access(accepted_delivery.id, outsider.id)

    async def test_cancelled_delivery_closes_chat(self, db, workflow, accepted_delivery, sender):
        await workflow.service.cancel_delivery(accepted_delivery.id, sender.id, "Not sending this anymore")
        with pytest.raises(ConflictError):
            await ChatService(db).send_message(accepted_delivery.id, sender.id, text="hello?")


class TestMessages:
    async def test_message_goes_to_the_other_participant(self, db, accepted_delivery, sender, carrier):
        message = await ChatService(db).send_message(accepted_delivery.id, sender.id, text="  Gate code is 42  ")
        assert message.sender_id == sender.id
        assert message.receiver_id == carrier.id
        assert message.message == "Gate code is 42"
        assert message.sender.username == sender.username

    async def test_empty_message_rejected(self, db, accepted_delivery, sender):
        with pytest.raises(ValidationError):
            await ChatService(db).send_message(accepted_delivery.id, sender.id, text="   ")

    async def test_attachment_only_message(self, db, accepted_delivery, carrier, sender):
        message = await ChatService(db).send_message(
            accepted_delivery.id, carrier.id,
            attachment_path="/uploads/chat/photo.jpg", attachment_type="image/jpeg"
        )
        assert message.message == ""
        assert message.receiver_id == sender.id
        assert message.attachment_path == "/uploads/chat/photo.jpg"

    async def test_history_is_chronological_and_paged(self, db, accepted_delivery, sender, carrier):
        service = ChatService(db)
        sent = []
        for i in range(settings.CHAT_PAGE_SIZE + 5):
            author = sender.id if i % 2 == 0 else carrier.id
            sent.append(await service.send_message(accepted_delivery.id, author, text=f"message {i}"))

        latest, has_more = await service.fetch_message_history(accepted_delivery.id, carrier.id)
        assert has_more is True
        assert len(latest) == settings.CHAT_PAGE_SIZE
        assert [m.id for m in latest] == [m.id for m in sent[5:]]

        older, has_more = await service.fetch_message_history(accepted_delivery.id, carrier.id, before=latest[0].id)
        assert has_more is False
        assert [m.id for m in older] == [m.id for m in sent[:5]]

    async def test_history_readable_after_cancellation(self, db, workflow, accepted_delivery, sender):
        await ChatService(db).send_message(accepted_delivery.id, sender.id, text="See you at 10")
        await workflow.service.cancel_delivery(accepted_delivery.id, sender.id, "Not sending this anymore")

        messages, _ = await ChatService(db).fetch_message_history(accepted_delivery.id, sender.id)
        assert [m.message for m in messages] == ["See you at 10"]

    async def test_history_is_participant_only(self, db, accepted_delivery, outsider):
        with pytest.raises(AuthorizationError):
            await ChatService(db).fetch_message_history(accepted_delivery.id, outsider.id)

    async def test_unknown_cursor(self, db, accepted_delivery, sender):
        with pytest.raises(ValidationError):
            await ChatService(db).fetch_message_history(accepted_delivery.id, sender.id, before=999999)


class TestConnectionManager:
    async def test_rooms_are_cleaned_on_disconnect(self):
        manager = ChatConnectionManager()
        websocket = FakeWebSocket()
        connection_id = await manager.connect(websocket, "user-1")

        assert websocket.accepted
        assert websocket.events("connection_established")[0]["connection_id"] == connection_id

        manager.join_room(connection_id, "abc")
        assert manager.room_members("abc") == {connection_id}
        assert chat_room("abc") in manager.rooms

        manager.disconnect(connection_id)
        assert manager.room_members("abc") == set()
        assert manager.rooms == {}
        assert manager.user_sessions == {}


class TestChatGateway:
    @pytest.fixture
    def manager(self):
        return ChatConnectionManager()

    @pytest.fixture
    def gateway(self, manager, session_factory):
        return ChatGateway(manager, session_factory)

    async def _connect(self, manager, user_id):
        websocket = FakeWebSocket()
        connection_id = await manager.connect(websocket, user_id)
        return connection_id, websocket

    async def _emit(self, gateway, connection_id, user_id, event, **data):
        await gateway.handle_event(connection_id, user_id, json.dumps({"event": event, "data": data}))

    async def test_join_and_receive_messages(self, gateway, manager, accepted_delivery, sender, carrier):
        sender_conn, sender_ws = await self._connect(manager, sender.id)
        carrier_conn, carrier_ws = await self._connect(manager, carrier.id)

        await self._emit(gateway, sender_conn, sender.id, "join_chat", delivery_id=accepted_delivery.id)
        await self._emit(gateway, carrier_conn, carrier.id, "join_chat", delivery_id=accepted_delivery.id)
        assert sender_ws.events("joined_chat")[0]["room"] == f"delivery-{accepted_delivery.id}"

        await self._emit(gateway, sender_conn, sender.id, "send_message",
                         delivery_id=accepted_delivery.id, message="On my way down")

        for websocket in (sender_ws, carrier_ws):
            received = websocket.events("receive_message")
            assert len(received) == 1
            assert received[0]["message"]["message"] == "On my way down"
            assert received[0]["message"]["receiver_id"] == carrier.id

    async def test_join_errors_are_events(self, gateway, manager, workflow, accepted_delivery, outsider, sender):
        conn, websocket = await self._connect(manager, outsider.id)
        await self._emit(gateway, conn, outsider.id, "join_chat", delivery_id=accepted_delivery.id)

        errors = websocket.events("error")
        assert errors[0]["event"] == "join_chat"
        assert manager.room_members(accepted_delivery.id) == set()

        unaccepted = await workflow.new_delivery(sender.id)
        sender_conn, sender_ws = await self._connect(manager, sender.id)
        await self._emit(gateway, sender_conn, sender.id, "join_chat", delivery_id=unaccepted.id)
        assert sender_ws.events("error")[0]["event"] == "join_chat"

        # Still connected
        await self._emit(gateway, conn, outsider.id, "ping")
        assert websocket.events("pong")

    async def test_outsider_cannot_send(self, gateway, manager, accepted_delivery, outsider, sender):
        sender_conn, sender_ws = await self._connect(manager, sender.id)
        await self._emit(gateway, sender_conn, sender.id, "join_chat", delivery_id=accepted_delivery.id)

        conn, websocket = await self._connect(manager, outsider.id)
        await self._emit(gateway, conn, outsider.id, "send_message",
                         delivery_id=accepted_delivery.id, message="let me in")

        assert websocket.events("error")[0]["event"] == "send_message"
        assert sender_ws.events("receive_message") == []

    async def test_leave_chat_stops_delivery(self, gateway, manager, accepted_delivery, sender, carrier):
        carrier_conn, carrier_ws = await self._connect(manager, carrier.id)
        await self._emit(gateway, carrier_conn, carrier.id, "join_chat", delivery_id=accepted_delivery.id)
        await self._emit(gateway, carrier_conn, carrier.id, "leave_chat", delivery_id=accepted_delivery.id)
        assert carrier_ws.events("left_chat")

        await gateway.deliver_message(accepted_delivery.id, sender.id, text="anyone there?")
        assert carrier_ws.events("receive_message") == []

    async def test_malformed_frames(self, gateway, manager, sender):
        conn, websocket = await self._connect(manager, sender.id)
        await gateway.handle_event(conn, sender.id, "not json")
        await self._emit(gateway, conn, sender.id, "dance")
        await self._emit(gateway, conn, sender.id, "join_chat")

        errors = websocket.events("error")
        assert [e["event"] for e in errors] == ["unknown", "dance", "join_chat"]

    async def test_concurrent_sends_broadcast_in_persisted_order(
        self, gateway, manager, session_factory, accepted_delivery, sender, carrier
    ):
        conn, websocket = await self._connect(manager, carrier.id)
        await self._emit(gateway, conn, carrier.id, "join_chat", delivery_id=accepted_delivery.id)

        await asyncio.gather(*[
            gateway.deliver_message(accepted_delivery.id, sender.id, text=f"burst {i}")
            for i in range(8)
        ])

        broadcast_ids = [e["message"]["id"] for e in websocket.events("receive_message")]
        assert len(broadcast_ids) == 8
        assert broadcast_ids == sorted(broadcast_ids)

        async with session_factory() as session:
            history, _ = await ChatService(session).fetch_message_history(accepted_delivery.id, carrier.id)
        assert [m.id for m in history] == broadcast_ids

    async def test_delivery_locks_released_after_sends(self, gateway, workflow, sender, carrier):
        deliveries = []
        for _ in range(3):
            delivery = await workflow.new_delivery(sender.id)
            await workflow.accept(delivery.id, carrier.id)
            deliveries.append(delivery.id)

        for delivery_id in deliveries:
            await gateway.deliver_message(delivery_id, sender.id, text="hello")
        await gateway.deliver_message(deliveries[0], carrier.id, text="got it")

        assert gateway._locks == {}
        assert gateway._lock_users == {}

    async def test_delivery_lock_released_when_send_fails(self, gateway, accepted_delivery, outsider):
        with pytest.raises(AuthorizationError):
            await gateway.deliver_message(accepted_delivery.id, outsider.id, text="let me in")
        assert gateway._locks == {}
