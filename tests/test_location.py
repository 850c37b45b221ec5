import pytest

from core.exceptions import AuthorizationError, ConflictError
from services.location import get_latest_location, record_location


class TestLocationFeed:
    async def test_carrier_pings_and_participants_read_latest(self, db, accepted_delivery, sender, carrier):
        await record_location(db, accepted_delivery.id, carrier.id, 12.9352, 77.6245)
        await record_location(db, accepted_delivery.id, carrier.id, 12.9719, 77.5937)

        for viewer in (sender.id, carrier.id):
            latest = await get_latest_location(db, accepted_delivery.id, viewer)
            assert (latest.latitude, latest.longitude) == (12.9719, 77.5937)

    async def test_no_pings_yet(self, db, accepted_delivery, sender):
        assert await get_latest_location(db, accepted_delivery.id, sender.id) is None

    async def test_only_assigned_carrier_reports(self, db, accepted_delivery, sender, other_carrier):
        for actor in (sender.id, other_carrier.id):
            with pytest.raises(AuthorizationError):
                await record_location(db, accepted_delivery.id, actor, 12.0, 77.0)

    async def test_outsider_cannot_read(self, db, accepted_delivery, outsider):
        with pytest.raises(AuthorizationError):
            await get_latest_location(db, accepted_delivery.id, outsider.id)

    async def test_no_tracking_after_delivery(self, db, workflow, sender, carrier):
        delivered = await workflow.delivered(sender.id, carrier.id)
        with pytest.raises(ConflictError):
            await record_location(db, delivered.id, carrier.id, 12.0, 77.0)
