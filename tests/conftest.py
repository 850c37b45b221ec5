import os
import tempfile

# Settings are read at import time, so the environment is prepared first
_workdir = tempfile.mkdtemp(prefix="carryconnect-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_workdir, 'app.db')}")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_workdir, "uploads"))
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_CALLS", "100000")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database.base import Base
import models.location, models.message, models.notification, models.review  # noqa: F401
from models.delivery import DeliveryStatus
from models.user import UserRole
from schemas.delivery import DeliveryCreate
from services.auth import create_user
from services.delivery import DeliveryService


def delivery_details(**overrides) -> DeliveryCreate:
    data = {
        "pickup_location": "Koramangala, Bengaluru",
        "drop_location": "Gokulam, Mysuru",
        "package_size": "medium",
        "package_weight": 1000,
        "delivery_fee": 30000,
        "description": "Box of books",
        "special_instructions": "Handle with care",
        "preferred_delivery_date": "2026-11-01",
        "preferred_delivery_time": "10:00",
    }
    data.update(overrides)
    return DeliveryCreate(**data)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def sender(db):
    return await create_user(db, "sender_sam", "password123", "Sam Sender", role=UserRole.SENDER,
                             phone_number="9876543210")


@pytest.fixture
async def carrier(db):
    return await create_user(db, "carrier_cara", "password123", "Cara Carrier", role=UserRole.CARRIER)


@pytest.fixture
async def other_carrier(db):
    return await create_user(db, "carrier_otto", "password123", "Otto Carrier", role=UserRole.CARRIER)


@pytest.fixture
async def outsider(db):
    return await create_user(db, "outsider_olga", "password123", "Olga Outsider", role=UserRole.BOTH)


@pytest.fixture
async def requested_delivery(db, sender):
    return await DeliveryService(db).create_delivery_request(sender.id, delivery_details())


class Workflow:
    """Drives deliveries through the lifecycle for tests that need a later state."""

    def __init__(self, db):
        self.db = db
        self.service = DeliveryService(db)

    async def otps(self, delivery_id, sender_id):
        view = await self.service.get_delivery_view(delivery_id, sender_id)
        return view.pickup_otp, view.delivery_otp

    async def accept(self, delivery_id, carrier_id):
        return await self.service.transition_status(delivery_id, carrier_id, DeliveryStatus.ACCEPTED)

    async def pick(self, delivery_id, sender_id, carrier_id):
        pickup_otp, _ = await self.otps(delivery_id, sender_id)
        return await self.service.transition_status(delivery_id, carrier_id, DeliveryStatus.PICKED, otp=pickup_otp)

    async def start_transit(self, delivery_id, carrier_id):
        return await self.service.transition_status(delivery_id, carrier_id, DeliveryStatus.IN_TRANSIT)

    async def complete(self, delivery_id, sender_id, carrier_id):
        _, delivery_otp = await self.otps(delivery_id, sender_id)
        return await self.service.transition_status(
            delivery_id, carrier_id, DeliveryStatus.DELIVERED, otp=delivery_otp
        )

    async def new_delivery(self, sender_id, **overrides):
        return await self.service.create_delivery_request(sender_id, delivery_details(**overrides))

    async def delivered(self, sender_id, carrier_id, **overrides):
        created = await self.new_delivery(sender_id, **overrides)
        await self.accept(created.id, carrier_id)
        await self.pick(created.id, sender_id, carrier_id)
        await self.start_transit(created.id, carrier_id)
        return await self.complete(created.id, sender_id, carrier_id)


@pytest.fixture
def workflow(db):
    return Workflow(db)


@pytest.fixture
async def accepted_delivery(workflow, requested_delivery, carrier):
    return await workflow.accept(requested_delivery.id, carrier.id)


@pytest.fixture
async def client(session_factory):
    from main import app
    from database.connection import get_db
    from routers.chat import chat_gateway

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    original_factory = chat_gateway.session_factory
    chat_gateway.session_factory = session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    chat_gateway.session_factory = original_factory
