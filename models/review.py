import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from database.base import Base

class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("delivery_id", "reviewer_id", name="uq_reviews_delivery_reviewer"),
        CheckConstraint("punctuality BETWEEN 1 AND 5", name="ck_reviews_punctuality"),
        CheckConstraint("communication BETWEEN 1 AND 5", name="ck_reviews_communication"),
        CheckConstraint("package_handling BETWEEN 1 AND 5", name="ck_reviews_package_handling"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    delivery_id = Column(String, ForeignKey("deliveries.id"), nullable=False, index=True)
    reviewer_id = Column(String, ForeignKey("users.id"), nullable=False)
    reviewee_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)  # overall, derived from the three metrics
    punctuality = Column(Integer, nullable=False)
    communication = Column(Integer, nullable=False)
    package_handling = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    reviewer = relationship("User", foreign_keys=[reviewer_id])

    def __repr__(self):
        return f"<Review(id={self.id}, delivery_id={self.delivery_id}, rating={self.rating})>"
