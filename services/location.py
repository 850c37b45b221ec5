from typing import Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AuthorizationError, ConflictError, ResourceNotFoundError
from models.delivery import Delivery, TRACKABLE_STATUSES
from models.location import DeliveryLocation

logger = logging.getLogger(__name__)


async def _get_delivery(db: AsyncSession, delivery_id: str) -> Delivery:
    result = await db.execute(
        select(Delivery).where(Delivery.id == delivery_id).execution_options(populate_existing=True)
    )
    delivery = result.scalar_one_or_none()
    if not delivery:
        raise ResourceNotFoundError("Delivery", delivery_id)
    return delivery


async def record_location(
    db: AsyncSession,
    delivery_id: str,
    user_id: str,
    latitude: float,
    longitude: float
) -> DeliveryLocation:
    """Append a GPS ping from the assigned carrier while the delivery is underway."""
    delivery = await _get_delivery(db, delivery_id)

    if delivery.carrier_id is None or delivery.carrier_id != user_id:
        raise AuthorizationError("Only the assigned carrier can report location")

    if delivery.status not in TRACKABLE_STATUSES:
        raise ConflictError(f"Location updates are not accepted for {delivery.status.value} deliveries")

    location = DeliveryLocation(delivery_id=delivery_id, latitude=latitude, longitude=longitude)
    db.add(location)
    await db.commit()

    logger.info(f"Location recorded for delivery {delivery_id}")
    return location


async def get_latest_location(db: AsyncSession, delivery_id: str, user_id: str) -> Optional[DeliveryLocation]:
    delivery = await _get_delivery(db, delivery_id)

    if not delivery.is_participant(user_id):
        raise AuthorizationError("Only the sender and carrier can view this delivery's location")

    result = await db.execute(
        select(DeliveryLocation)
        .where(DeliveryLocation.delivery_id == delivery_id)
        .order_by(DeliveryLocation.timestamp.desc(), DeliveryLocation.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
