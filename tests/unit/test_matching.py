"""
Unit tests for provider matching: eligibility filters, ordering, offers.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from dispatch.config import Settings
from dispatch.services.geo import Coordinates
from dispatch.services.matching import ProviderMatcher, category_for
from dispatch.schemas.schemas import RideServiceData
from tests.fakes import ACCRA, make_booking, make_provider

PICKUP = Coordinates(*ACCRA)


def at_offset(provider_id, metres_north, **overrides):
    # 1 degree of latitude ~ 111.2 km
    return make_provider(provider_id, lat=ACCRA[0] + metres_north / 111_195, lng=ACCRA[1], **overrides)


@pytest.mark.asyncio
class TestFindNearby:
    async def test_sorted_by_distance_with_eta(self, store, services):
        store.add_provider(at_offset("far", 2900))
        store.add_provider(at_offset("near", 400))
        store.add_provider(at_offset("mid", 1400))

        found = await services.matcher.find_nearby(PICKUP, category="ECONOMY")

        assert [c.provider_id for c in found] == ["near", "mid", "far"]
        assert found[0].distance_m == pytest.approx(400, abs=5)
        assert found[0].eta_minutes == 1
        assert found[2].eta_minutes == 6

    async def test_filters_ineligible_providers(self, store, services):
        store.add_provider(at_offset("offline", 100, is_online=False))
        store.add_provider(at_offset("busy", 100, is_available=False))
        store.add_provider(at_offset("unverified", 100, is_verified=False))
        store.add_provider(at_offset("wrong-category", 100, category="PREMIUM"))
        store.add_provider(at_offset("too-far", 20_000))
        store.add_provider(at_offset("ok", 100))

        found = await services.matcher.find_nearby(PICKUP, category="ECONOMY", radius_m=15_000)
        assert [c.provider_id for c in found] == ["ok"]

    async def test_zone_and_inter_regional_filters(self, store, services):
        store.add_provider(at_offset("local", 100, zone_id="accra"))
        store.add_provider(at_offset("long-haul", 200, zone_id="accra", accepts_inter_regional=True))
        store.add_provider(at_offset("elsewhere", 50, zone_id="kumasi", accepts_inter_regional=True))

        found = await services.matcher.find_nearby(PICKUP, zone_id="accra", inter_regional_only=True)
        assert [c.provider_id for c in found] == ["long-haul"]

    async def test_capped_at_max_candidates(self, store, uow_factory, notifier):
        for i in range(5):
            store.add_provider(at_offset(f"p{i}", 100 * (i + 1)))
        matcher = ProviderMatcher(uow_factory, notifier, settings=Settings(matching_max_candidates=3))

        found = await matcher.find_nearby(PICKUP)
        assert [c.provider_id for c in found] == ["p0", "p1", "p2"]

    async def test_lookup_timeout_returns_empty(self, uow_factory, notifier):
        class SlowMatcher(ProviderMatcher):
            async def _lookup(self, *args, **kwargs):
                await asyncio.sleep(1)
                return []

        matcher = SlowMatcher(uow_factory, notifier, settings=Settings(provider_lookup_timeout_seconds=0.01))
        assert await matcher.find_nearby(PICKUP) == []


@pytest.mark.asyncio
class TestGeoPreselection:
    async def test_geo_index_narrows_the_directory(self, store, uow_factory, notifier):
        store.add_provider(at_offset("near", 300))
        store.add_provider(at_offset("indexed-busy", 200, is_available=False))
        store.add_provider(at_offset("not-indexed", 100))
        redis = AsyncMock()
        redis.geosearch = AsyncMock(return_value=["near", "indexed-busy"])
        matcher = ProviderMatcher(uow_factory, notifier, redis, Settings(geo_search_count=20))

        found = await matcher.find_nearby(PICKUP, category="ECONOMY", radius_m=5000)

        assert [c.provider_id for c in found] == ["near"]
        redis.geosearch.assert_awaited_once_with(
            "providers:geo:ECONOMY",
            longitude=ACCRA[1],
            latitude=ACCRA[0],
            radius=5000,
            unit="m",
            sort="ASC",
            count=20,
        )

    async def test_empty_geo_index_finds_nobody(self, store, uow_factory, notifier):
        store.add_provider(at_offset("unindexed", 100))
        redis = AsyncMock()
        redis.geosearch = AsyncMock(return_value=[])
        matcher = ProviderMatcher(uow_factory, notifier, redis)

        assert await matcher.find_nearby(PICKUP, category="ECONOMY") == []

    async def test_redis_failure_falls_back_to_directory_scan(self, store, uow_factory, notifier):
        store.add_provider(at_offset("near", 300))
        redis = AsyncMock()
        redis.geosearch = AsyncMock(side_effect=RedisError("connection refused"))
        matcher = ProviderMatcher(uow_factory, notifier, redis)

        found = await matcher.find_nearby(PICKUP, category="ECONOMY")
        assert [c.provider_id for c in found] == ["near"]

    async def test_any_category_search_skips_the_index(self, store, uow_factory, notifier):
        store.add_provider(at_offset("courier", 300, category="COURIER"))
        redis = AsyncMock()
        matcher = ProviderMatcher(uow_factory, notifier, redis)

        found = await matcher.find_nearby(PICKUP)
        assert [c.provider_id for c in found] == ["courier"]
        redis.geosearch.assert_not_awaited()


@pytest.mark.asyncio
class TestDispatch:
    async def test_offers_go_to_top_n(self, store, services, sink, notifier):
        for i in range(7):
            store.add_provider(at_offset(f"p{i}", 200 * (i + 1)))
        booking = make_booking()

        notified = await services.matcher.dispatch(booking, top_n=5)

        assert [c.provider_id for c in notified] == ["p0", "p1", "p2", "p3", "p4"]
        await notifier.drain()
        offers = sink.events("booking.offer")
        assert [o[0] for o in offers] == ["p0", "p1", "p2", "p3", "p4"]
        assert offers[0][2]["booking_id"] == booking.id
        assert offers[0][2]["estimated_earning"] == "32.80"

    async def test_no_candidates_sends_nothing(self, services, sink, notifier):
        assert await services.matcher.dispatch(make_booking()) == []
        await notifier.drain()
        assert sink.sent == []

    async def test_category_follows_ride_payload(self):
        booking = make_booking(service_data=RideServiceData(ride_category="PREMIUM").model_dump(mode="json"))
        assert category_for(booking) == "PREMIUM"
        assert category_for(make_booking(service_type="EMERGENCY")) == "RESPONDER"
        assert category_for(make_booking(service_type="HOUSE_MOVING")) is None
