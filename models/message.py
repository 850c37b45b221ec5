from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from database.base import Base

class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_delivery_created", "delivery_id", "created_at", "id"),
    )

    # Integer key gives a total order for messages sharing a timestamp
    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(String, ForeignKey("deliveries.id"), nullable=False)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(String, ForeignKey("users.id"), nullable=False)
    message = Column(Text, nullable=False, default="")
    attachment_path = Column(String(500), nullable=True)
    attachment_type = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    sender = relationship("User", foreign_keys=[sender_id])

    def __repr__(self):
        return f"<Message(id={self.id}, delivery_id={self.delivery_id}, sender_id={self.sender_id})>"
