from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from routers.auth import get_current_user
from services.rating import RatingService
from schemas.rating import ReviewCreate, ReviewResponse, ReviewWithReviewer, UserProfile
from schemas.user import UserResponse

router = APIRouter(prefix="/api", tags=["reviews"])

# Public endpoints
@router.get("/users/{user_id}/profile", response_model=UserProfile)
async def get_user_profile(user_id: str, db: AsyncSession = Depends(get_db)):
    """Public profile with aggregate rating and recent reviews"""
    return await RatingService.get_user_profile(db=db, user_id=user_id)

@router.get("/users/{user_id}/reviews", response_model=List[ReviewWithReviewer])
async def get_user_reviews(user_id: str, db: AsyncSession = Depends(get_db)):
    """Reviews a user has received, newest first"""
    await RatingService.get_user_profile(db=db, user_id=user_id)
    return await RatingService.get_user_reviews(db=db, user_id=user_id)

# Authenticated endpoints
@router.post("/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    review_data: ReviewCreate,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Rate the other participant of a delivered delivery"""
    return await RatingService.create_review(
        db=db,
        reviewer_id=current_user.id,
        review_data=review_data
    )
