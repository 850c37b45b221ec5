import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from database.base import Base
import enum

class PackageSize(str, enum.Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

class DeliveryStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    PICKED = "picked"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)

    @property
    def is_chat_eligible(self) -> bool:
        return self not in (DeliveryStatus.REQUESTED, DeliveryStatus.CANCELLED)


# Carrier-driven forward steps: target -> required current status
FORWARD_TRANSITIONS = {
    DeliveryStatus.ACCEPTED: DeliveryStatus.REQUESTED,
    DeliveryStatus.PICKED: DeliveryStatus.ACCEPTED,
    DeliveryStatus.IN_TRANSIT: DeliveryStatus.PICKED,
    DeliveryStatus.DELIVERED: DeliveryStatus.IN_TRANSIT,
}

# Statuses in which each participant may still cancel
SENDER_CANCEL_WINDOW = (DeliveryStatus.REQUESTED, DeliveryStatus.ACCEPTED)
CARRIER_CANCEL_WINDOW = (DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED)

# Statuses during which the carrier reports GPS pings
TRACKABLE_STATUSES = (DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED, DeliveryStatus.IN_TRANSIT)


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    carrier_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)

    pickup_location = Column(String(255), nullable=False, index=True)
    drop_location = Column(String(255), nullable=False, index=True)
    package_size = Column(Enum(PackageSize), nullable=False)
    package_weight = Column(Integer, nullable=False)  # grams
    delivery_fee = Column(Integer, nullable=False)  # cents
    description = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)
    preferred_delivery_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    preferred_delivery_time = Column(String(20), nullable=False)

    status = Column(Enum(DeliveryStatus), nullable=False, default=DeliveryStatus.REQUESTED, index=True)
    pickup_otp = Column(String(6), nullable=True)
    delivery_otp = Column(String(6), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    sender = relationship("User", foreign_keys=[sender_id])
    carrier = relationship("User", foreign_keys=[carrier_id])

    def is_participant(self, user_id: str) -> bool:
        return user_id == self.sender_id or (self.carrier_id is not None and user_id == self.carrier_id)

    def counterpart_of(self, user_id: str):
        """The other participant, or None while no carrier is assigned."""
        if user_id == self.sender_id:
            return self.carrier_id
        return self.sender_id

    def __repr__(self):
        return f"<Delivery(id={self.id}, status={self.status}, carrier_id={self.carrier_id})>"
