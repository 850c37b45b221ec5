from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey
from database.base import Base

class DeliveryLocation(Base):
    __tablename__ = "delivery_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(String, ForeignKey("deliveries.id"), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DeliveryLocation(delivery_id={self.delivery_id}, lat={self.latitude}, lng={self.longitude})>"
