from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from schemas.user import UserSummary

# Review Schemas
class ReviewCreate(BaseModel):
    delivery_id: str
    reviewee_id: str
    punctuality: int = Field(..., ge=1, le=5, description="Punctuality from 1 to 5 stars")
    communication: int = Field(..., ge=1, le=5, description="Communication from 1 to 5 stars")
    package_handling: int = Field(..., ge=1, le=5, description="Package handling from 1 to 5 stars")
    comment: Optional[str] = Field(None, max_length=2000, description="Optional review text")

class ReviewResponse(BaseModel):
    id: str
    delivery_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    punctuality: int
    communication: int
    package_handling: int
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class ReviewWithReviewer(ReviewResponse):
    reviewer: Optional[UserSummary] = None

# Public profile with aggregate rating
class UserProfile(UserSummary):
    recent_reviews: List[ReviewWithReviewer] = []
