from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
import logging

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.exceptions import (
    AuthorizationError,
    ConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from models.delivery import Delivery, DeliveryStatus
from models.notification import NotificationType
from models.review import Review
from models.user import User
from schemas.rating import ReviewCreate, ReviewResponse, UserProfile, ReviewWithReviewer
from services.notification import NotificationService

logger = logging.getLogger(__name__)

RECENT_REVIEWS_LIMIT = 5


def round_half_up(value) -> int:
    """Round .5 away from zero instead of Python's banker's rounding."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def overall_rating(punctuality: int, communication: int, package_handling: int) -> int:
    return round_half_up(Decimal(punctuality + communication + package_handling) / Decimal(3))


class RatingService:

    @staticmethod
    async def create_review(db: AsyncSession, reviewer_id: str, review_data: ReviewCreate) -> ReviewResponse:
        """Record a review for a delivered delivery and refresh the reviewee's aggregate.

        The review row and the aggregate update commit together; a second review
        of the same delivery by the same reviewer is rejected by the unique key.
        """
        result = await db.execute(select(Delivery).where(Delivery.id == review_data.delivery_id))
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise ResourceNotFoundError("Delivery", review_data.delivery_id)

        if not delivery.is_participant(reviewer_id):
            raise AuthorizationError("Only delivery participants can leave a review")

        if delivery.status != DeliveryStatus.DELIVERED:
            raise ConflictError("Reviews can only be left for delivered deliveries")

        if review_data.reviewee_id == reviewer_id:
            raise ValidationError("You cannot review yourself", field="reviewee_id")

        if review_data.reviewee_id != delivery.counterpart_of(reviewer_id):
            raise ValidationError("Reviewee must be the other participant of the delivery", field="reviewee_id")

        existing = await RatingService.get_review_by_delivery_and_reviewer(db, delivery.id, reviewer_id)
        if existing:
            raise ConflictError("You have already reviewed this delivery")

        review = Review(
            delivery_id=delivery.id,
            reviewer_id=reviewer_id,
            reviewee_id=review_data.reviewee_id,
            rating=overall_rating(
                review_data.punctuality,
                review_data.communication,
                review_data.package_handling
            ),
            punctuality=review_data.punctuality,
            communication=review_data.communication,
            package_handling=review_data.package_handling,
            comment=review_data.comment
        )

        try:
            db.add(review)
            await db.flush()
            await RatingService._update_user_rating_stats(db, review_data.reviewee_id)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning(f"Duplicate review for delivery {review_data.delivery_id} by {reviewer_id}")
            raise ConflictError("You have already reviewed this delivery")

        logger.info(f"Review {review.id} created for user {review.reviewee_id} (rating {review.rating})")
        response = ReviewResponse.model_validate(review)

        await NotificationService(db).send_notification(
            review.reviewee_id,
            title="New Review",
            body=f"You received a {review.rating}-star review.",
            data={"delivery_id": delivery.id, "review_id": review.id, "type": "review_received"},
            notification_type=NotificationType.REVIEW
        )
        return response

    @staticmethod
    async def _update_user_rating_stats(db: AsyncSession, user_id: str):
        """Recompute the reviewee's rounded mean and count from all their reviews."""
        result = await db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.reviewee_id == user_id)
        )
        average, count = result.one()

        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                rating=round_half_up(average) if count else None,
                total_reviews=count
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def get_review_by_delivery_and_reviewer(
        db: AsyncSession,
        delivery_id: str,
        reviewer_id: str
    ) -> Optional[Review]:
        result = await db.execute(
            select(Review).where(
                Review.delivery_id == delivery_id,
                Review.reviewer_id == reviewer_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user_reviews(
        db: AsyncSession,
        user_id: str,
        limit: Optional[int] = None
    ) -> List[Review]:
        """Reviews received by a user, newest first."""
        query = (
            select(Review)
            .options(selectinload(Review.reviewer))
            .where(Review.reviewee_id == user_id)
            .order_by(Review.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if limit:
            query = query.limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_user_profile(db: AsyncSession, user_id: str) -> UserProfile:
        result = await db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise ResourceNotFoundError("User", user_id)

        reviews = await RatingService.get_user_reviews(db, user_id, limit=RECENT_REVIEWS_LIMIT)

        return UserProfile(
            id=user.id,
            username=user.username,
            full_name=user.full_name,
            phone_number=user.phone_number,
            rating=user.rating,
            total_reviews=user.total_reviews,
            recent_reviews=[ReviewWithReviewer.model_validate(r) for r in reviews]
        )
