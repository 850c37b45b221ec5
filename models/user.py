import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Enum
from database.base import Base
import enum

class UserRole(str, enum.Enum):
    SENDER = "sender"
    CARRIER = "carrier"
    BOTH = "both"

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    full_name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.BOTH)
    phone_number = Column(String(10), nullable=True)

    # Maintained by the rating aggregator only
    rating = Column(Integer, nullable=True)
    total_reviews = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def can_send(self) -> bool:
        return self.role in (UserRole.SENDER, UserRole.BOTH)

    @property
    def can_carry(self) -> bool:
        return self.role in (UserRole.CARRIER, UserRole.BOTH)

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
