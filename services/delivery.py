"""
Delivery lifecycle: request creation, carrier acceptance, OTP-gated
pickup/delivery confirmation and cancellation.

Every status write is a single conditional UPDATE guarded by the status the
caller observed (and, for acceptance, by ``carrier_id IS NULL``). When the
guard matches no row another writer got there first and the caller receives a
``ConflictError``; nothing is cached in process between requests.
"""
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidOtpError,
    ResourceNotFoundError,
    ValidationError,
)
from models.delivery import (
    Delivery,
    DeliveryStatus,
    FORWARD_TRANSITIONS,
    SENDER_CANCEL_WINDOW,
    CARRIER_CANCEL_WINDOW,
)
from models.notification import NotificationType
from models.user import User
from schemas.delivery import DeliveryCreate, DeliveryFilters, DeliveryResponse, OtpType
from services.auth import get_user_by_id
from services.notification import NotificationService
from services.otp import issue_otp_pair, is_well_formed, otp_matches

logger = logging.getLogger(__name__)

MIN_CANCELLATION_REASON_LENGTH = 10

# Transitions confirmed by the code the sender reads out to the carrier
OTP_GATED = {
    DeliveryStatus.PICKED: OtpType.PICKUP,
    DeliveryStatus.DELIVERED: OtpType.DELIVERY,
}

STATUS_NOTIFICATIONS = {
    DeliveryStatus.ACCEPTED: ("Delivery Accepted", "Your delivery from {pickup} to {drop} has been accepted by {carrier}."),
    DeliveryStatus.PICKED: ("Package Picked Up", "{carrier} has picked up your package."),
    DeliveryStatus.IN_TRANSIT: ("Package In Transit", "Your package is on its way to {drop}."),
    DeliveryStatus.DELIVERED: ("Package Delivered", "Your package has been delivered to {drop}."),
}


def to_response(delivery: Delivery, viewer_id: Optional[str]) -> DeliveryResponse:
    """Hydrated delivery view; OTPs are visible to the sender only."""
    response = DeliveryResponse.model_validate(delivery)
    if viewer_id is None or viewer_id != delivery.sender_id:
        response.pickup_otp = None
        response.delivery_otp = None
    return response


class DeliveryService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.notifications = NotificationService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_delivery(self, delivery_id: str) -> Delivery:
        """Read the current persisted delivery with sender and carrier loaded."""
        result = await self.db.execute(
            select(Delivery)
            .options(selectinload(Delivery.sender), selectinload(Delivery.carrier))
            .where(Delivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise ResourceNotFoundError("Delivery", delivery_id)
        return delivery

    async def get_delivery_view(self, delivery_id: str, viewer_id: Optional[str]) -> DeliveryResponse:
        delivery = await self.get_delivery(delivery_id)
        return to_response(delivery, viewer_id)

    async def list_deliveries(
        self,
        filters: DeliveryFilters,
        page: int = 1,
        per_page: int = 20
    ) -> Tuple[List[Delivery], int]:
        """Filtered delivery listing, newest first."""
        conditions = []
        if filters.status:
            conditions.append(Delivery.status == filters.status)
        if filters.pickup_location:
            conditions.append(Delivery.pickup_location == filters.pickup_location)
        if filters.drop_location:
            conditions.append(Delivery.drop_location == filters.drop_location)
        if filters.package_size:
            conditions.append(Delivery.package_size == filters.package_size)
        if filters.min_weight is not None:
            conditions.append(Delivery.package_weight >= filters.min_weight)
        if filters.max_weight is not None:
            conditions.append(Delivery.package_weight <= filters.max_weight)
        if filters.min_fee is not None:
            conditions.append(Delivery.delivery_fee >= filters.min_fee)
        if filters.max_fee is not None:
            conditions.append(Delivery.delivery_fee <= filters.max_fee)
        if filters.min_rating is not None:
            conditions.append(User.rating >= filters.min_rating)
        if filters.start_date:
            conditions.append(Delivery.preferred_delivery_date >= filters.start_date)
        if filters.end_date:
            conditions.append(Delivery.preferred_delivery_date <= filters.end_date)

        count_result = await self.db.execute(
            select(func.count(Delivery.id))
            .join(User, Delivery.sender_id == User.id)
            .where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(Delivery)
            .join(User, Delivery.sender_id == User.id)
            .options(selectinload(Delivery.sender), selectinload(Delivery.carrier))
            .where(*conditions)
            .order_by(Delivery.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def get_sender_deliveries(self, user_id: str) -> List[Delivery]:
        result = await self.db.execute(
            select(Delivery)
            .options(selectinload(Delivery.sender), selectinload(Delivery.carrier))
            .where(Delivery.sender_id == user_id)
            .order_by(Delivery.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_carrier_deliveries(self, user_id: str) -> List[Delivery]:
        result = await self.db.execute(
            select(Delivery)
            .options(selectinload(Delivery.sender), selectinload(Delivery.carrier))
            .where(Delivery.carrier_id == user_id)
            .order_by(Delivery.created_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_delivery_request(self, sender_id: str, details: DeliveryCreate) -> DeliveryResponse:
        """Post a new delivery request; it always starts as ``requested``."""
        sender = await get_user_by_id(self.db, sender_id)
        if not sender:
            raise ResourceNotFoundError("User", sender_id)
        if not sender.can_send:
            raise AuthorizationError("Only senders can create delivery requests")

        delivery = Delivery(
            sender_id=sender_id,
            carrier_id=None,
            status=DeliveryStatus.REQUESTED,
            pickup_otp=None,
            delivery_otp=None,
            **details.model_dump()
        )
        self.db.add(delivery)
        await self.db.commit()

        logger.info(f"Delivery {delivery.id} requested by {sender_id}")
        return await self.get_delivery_view(delivery.id, sender_id)

    async def transition_status(
        self,
        delivery_id: str,
        actor_id: str,
        target_status: DeliveryStatus,
        otp: Optional[str] = None
    ) -> DeliveryResponse:
        """Apply a carrier-driven status transition."""
        if target_status == DeliveryStatus.CANCELLED:
            raise ValidationError(
                "Cancelling requires a reason; use the cancel operation",
                field="status"
            )

        delivery = await self.get_delivery(delivery_id)

        if target_status == DeliveryStatus.ACCEPTED:
            await self._accept(delivery, actor_id)
        elif target_status in FORWARD_TRANSITIONS:
            await self._advance(delivery, actor_id, target_status, otp)
        else:
            if not delivery.is_participant(actor_id):
                raise AuthorizationError("Only the assigned carrier can update this delivery")
            raise ConflictError(
                f"Cannot move delivery from {delivery.status.value} to {target_status.value}"
            )

        updated = await self.get_delivery(delivery_id)
        response = to_response(updated, actor_id)
        await self._notify_status_change(updated, target_status)
        return response

    async def _accept(self, delivery: Delivery, actor_id: str):
        delivery_id = delivery.id
        if delivery.sender_id == actor_id:
            raise AuthorizationError("You cannot accept your own delivery")

        actor = await get_user_by_id(self.db, actor_id)
        if not actor:
            raise ResourceNotFoundError("User", actor_id)
        if not actor.can_carry:
            raise AuthorizationError("Only carriers can accept deliveries")

        if delivery.status == DeliveryStatus.CANCELLED:
            raise ConflictError("Delivery is cancelled")
        if delivery.carrier_id is not None or delivery.status != DeliveryStatus.REQUESTED:
            raise ConflictError("This delivery has already been accepted by someone else")

        pickup_otp, delivery_otp = await issue_otp_pair(self.db)

        # Carrier assignment, both OTPs and the status change land in one statement
        result = await self.db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.carrier_id.is_(None),
                Delivery.status == DeliveryStatus.REQUESTED
            )
            .values(
                carrier_id=actor_id,
                status=DeliveryStatus.ACCEPTED,
                pickup_otp=pickup_otp,
                delivery_otp=delivery_otp,
                updated_at=datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Rollback expires the loaded instance, so log from the id captured above
            await self.db.rollback()
            logger.warning(f"Carrier {actor_id} lost the race to accept delivery {delivery_id}")
            raise ConflictError("This delivery has already been accepted by someone else")

        await self.db.commit()
        logger.info(f"Delivery {delivery_id} accepted by carrier {actor_id}")

    async def _advance(self, delivery: Delivery, actor_id: str, target: DeliveryStatus, otp: Optional[str]):
        if delivery.carrier_id is None or delivery.carrier_id != actor_id:
            raise AuthorizationError("Only the assigned carrier can update this delivery")

        expected = FORWARD_TRANSITIONS[target]
        if delivery.status != expected:
            raise ConflictError(
                f"Cannot move delivery from {delivery.status.value} to {target.value}"
            )

        otp_type = OTP_GATED.get(target)
        if otp_type is not None:
            if otp is None or otp == "":
                raise ValidationError("OTP is required", field="otp")
            if not is_well_formed(otp):
                raise ValidationError("OTP must be exactly 6 digits", field="otp")
            stored = delivery.pickup_otp if otp_type == OtpType.PICKUP else delivery.delivery_otp
            if not otp_matches(stored, otp):
                logger.warning(f"Invalid {otp_type.value} OTP submitted for delivery {delivery.id}")
                raise InvalidOtpError()

        result = await self.db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery.id,
                Delivery.status == expected,
                Delivery.carrier_id == actor_id
            )
            .values(status=target, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Delivery status changed, please refresh and try again")

        await self.db.commit()
        logger.info(f"Delivery {delivery.id} moved {expected.value} -> {target.value}")

    async def cancel_delivery(self, delivery_id: str, actor_id: str, reason: Optional[str]) -> DeliveryResponse:
        """Cancel within the actor's window and notify the other participant."""
        reason = (reason or "").strip()
        if len(reason) < MIN_CANCELLATION_REASON_LENGTH:
            raise ValidationError(
                f"Cancellation reason is required and must be at least {MIN_CANCELLATION_REASON_LENGTH} characters",
                field="cancellation_reason"
            )

        delivery = await self.get_delivery(delivery_id)
        is_sender = actor_id == delivery.sender_id
        is_carrier = delivery.carrier_id is not None and actor_id == delivery.carrier_id

        if not is_sender and not is_carrier:
            raise AuthorizationError("Only the sender or carrier can cancel this delivery")

        if delivery.status == DeliveryStatus.CANCELLED:
            raise ConflictError("Delivery is already cancelled")

        if is_sender:
            window = SENDER_CANCEL_WINDOW
            if delivery.status not in window:
                raise ConflictError("Sender can only cancel delivery before it is picked")
        else:
            window = CARRIER_CANCEL_WINDOW
            if delivery.status not in window:
                raise ConflictError("Carrier can only cancel delivery before it is in-transit")

        now = datetime.utcnow()
        result = await self.db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.status.in_(window)
            )
            .values(
                status=DeliveryStatus.CANCELLED,
                cancellation_reason=reason,
                cancelled_at=now,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Delivery status changed, please refresh and try again")

        await self.db.commit()
        logger.info(f"Delivery {delivery_id} cancelled by {'sender' if is_sender else 'carrier'} {actor_id}")

        cancelled = await self.get_delivery(delivery_id)
        response = to_response(cancelled, actor_id)

        recipient_id = cancelled.carrier_id if is_sender else cancelled.sender_id
        if recipient_id:
            await self.notifications.send_notification(
                recipient_id,
                title="Delivery Cancelled",
                body=f"The delivery has been cancelled by the {'sender' if is_sender else 'carrier'}. Reason: {reason}",
                data={"delivery_id": delivery_id, "type": "delivery_cancelled"}
            )

        return response

    async def validate_otp(self, delivery_id: str, actor_id: str, otp: str, otp_type: OtpType) -> bool:
        """Read-only OTP check for the assigned carrier."""
        delivery = await self.get_delivery(delivery_id)

        if delivery.carrier_id is None or actor_id != delivery.carrier_id:
            raise AuthorizationError("Only the carrier can validate OTP")

        if not is_well_formed(otp):
            raise ValidationError("OTP must be exactly 6 digits", field="otp")

        stored = delivery.pickup_otp if otp_type == OtpType.PICKUP else delivery.delivery_otp
        return otp_matches(stored, otp)

    async def _notify_status_change(self, delivery: Delivery, status: DeliveryStatus):
        template = STATUS_NOTIFICATIONS.get(status)
        if not template:
            return

        title, body = template
        carrier_name = delivery.carrier.full_name if delivery.carrier else "A carrier"
        await self.notifications.send_notification(
            delivery.sender_id,
            title=title,
            body=body.format(pickup=delivery.pickup_location, drop=delivery.drop_location, carrier=carrier_name),
            data={"delivery_id": delivery.id, "type": f"delivery_{status.value}"},
            notification_type=NotificationType.DELIVERY
        )
