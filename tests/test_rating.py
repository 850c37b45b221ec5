import pytest
from sqlalchemy import select

from core.exceptions import AuthorizationError, ConflictError, ValidationError
from models.review import Review
from models.user import User
from schemas.rating import ReviewCreate
from services.rating import RatingService, overall_rating, round_half_up


def review_for(delivery_id, reviewee_id, punctuality=5, communication=5, package_handling=5, comment=None):
    return ReviewCreate(
        delivery_id=delivery_id,
        reviewee_id=reviewee_id,
        punctuality=punctuality,
        communication=communication,
        package_handling=package_handling,
        comment=comment
    )


async def _user(db, user_id) -> User:
    result = await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    return result.scalar_one()


class TestRounding:
    @pytest.mark.parametrize("value,expected", [(4.5, 5), (3.5, 4), (2.5, 3), (4.49, 4), (1.0, 1)])
    def test_half_rounds_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_overall_is_rounded_mean(self):
        assert overall_rating(5, 4, 4) == 4
        assert overall_rating(5, 5, 4) == 5
        assert overall_rating(1, 2, 2) == 2


class TestCreateReview:
    async def test_sender_reviews_carrier(self, db, workflow, sender, carrier):
        delivered = await workflow.delivered(sender.id, carrier.id)

        review = await RatingService.create_review(
            db, sender.id, review_for(delivered.id, carrier.id, 5, 4, 4, comment="On time")
        )
        assert review.rating == 4
        assert review.reviewee_id == carrier.id

        reviewee = await _user(db, carrier.id)
        assert reviewee.rating == 4
        assert reviewee.total_reviews == 1

    async def test_review_is_accepted_exactly_once(self, db, workflow, sender, carrier):
        delivered = await workflow.delivered(sender.id, carrier.id)
        await RatingService.create_review(db, sender.id, review_for(delivered.id, carrier.id))

        with pytest.raises(ConflictError):
            await RatingService.create_review(db, sender.id, review_for(delivered.id, carrier.id, 1, 1, 1))

        result = await db.execute(select(Review).where(Review.delivery_id == delivered.id))
        assert len(result.scalars().all()) == 1
        reviewee = await _user(db, carrier.id)
        assert reviewee.total_reviews == 1
        assert reviewee.rating == 5

    async def test_racing_duplicate_hits_unique_key(self, db, workflow, sender, carrier, monkeypatch):
        sender_id, carrier_id = sender.id, carrier.id
        delivered = await workflow.delivered(sender_id, carrier_id)
        delivery_id = delivered.id
        await RatingService.create_review(db, sender_id, review_for(delivery_id, carrier_id))

        # A second request that passed the existence check before the first committed
        async def not_found_yet(*args, **kwargs):
            return None

        monkeypatch.setattr(RatingService, "get_review_by_delivery_and_reviewer", staticmethod(not_found_yet))
        with pytest.raises(ConflictError):
            await RatingService.create_review(db, sender_id, review_for(delivery_id, carrier_id, 1, 1, 1))

        reviewee = await _user(db, carrier_id)
        assert reviewee.total_reviews == 1
        assert reviewee.rating == 5

    async def test_both_participants_can_review(self, db, workflow, sender, carrier):
        delivered = await workflow.delivered(sender.id, carrier.id)
        await RatingService.create_review(db, sender.id, review_for(delivered.id, carrier.id))
        await RatingService.create_review(db, carrier.id, review_for(delivered.id, sender.id, 3, 3, 3))

        assert (await _user(db, sender.id)).rating == 3

    async def test_aggregate_rounds_half_up(self, db, workflow, sender, carrier):
        first = await workflow.delivered(sender.id, carrier.id)
        second = await workflow.delivered(sender.id, carrier.id)

        await RatingService.create_review(db, sender.id, review_for(first.id, carrier.id, 4, 4, 4))
        await RatingService.create_review(db, sender.id, review_for(second.id, carrier.id, 5, 5, 5))

        reviewee = await _user(db, carrier.id)
        assert reviewee.total_reviews == 2
        assert reviewee.rating == 5

    async def test_requires_delivered_status(self, db, accepted_delivery, sender, carrier):
        with pytest.raises(ConflictError):
            await RatingService.create_review(db, sender.id, review_for(accepted_delivery.id, carrier.id))

    async def test_outsider_cannot_review(self, db, workflow, sender, carrier, outsider):
        delivered = await workflow.delivered(sender.id, carrier.id)
        with pytest.raises(AuthorizationError):
            await RatingService.create_review(db, outsider.id, review_for(delivered.id, carrier.id))

    async def test_reviewee_must_be_the_other_participant(self, db, workflow, sender, carrier, outsider):
        delivered = await workflow.delivered(sender.id, carrier.id)
        for reviewee in (sender.id, outsider.id):
            with pytest.raises(ValidationError):
                await RatingService.create_review(db, sender.id, review_for(delivered.id, reviewee))

    async def test_reviewee_is_notified(self, db, workflow, sender, carrier):
        from services.notification import NotificationService

        delivered = await workflow.delivered(sender.id, carrier.id)
        await RatingService.create_review(db, sender.id, review_for(delivered.id, carrier.id))

        notifications = await NotificationService(db).get_user_notifications(carrier.id)
        assert any(n.title == "New Review" for n in notifications)


class TestProfiles:
    async def test_profile_lists_recent_reviews(self, db, workflow, sender, carrier):
        delivered = await workflow.delivered(sender.id, carrier.id)
        await RatingService.create_review(db, sender.id, review_for(delivered.id, carrier.id, comment="Great"))

        profile = await RatingService.get_user_profile(db, carrier.id)
        assert profile.rating == 5
        assert profile.total_reviews == 1
        assert profile.recent_reviews[0].comment == "Great"
        assert profile.recent_reviews[0].reviewer.username == sender.username

    async def test_unreviewed_user_has_no_rating(self, db, carrier):
        profile = await RatingService.get_user_profile(db, carrier.id)
        assert profile.rating is None
        assert profile.total_reviews == 0
        assert profile.recent_reviews == []
