"""
Provider matching engine.

Flow:
  1. Pre-select the nearest provider ids from the Redis GEO index of the
     category (GEOSEARCH), or scan the directory when that index is unusable
  2. Load the online + available + verified ones from Postgres (optionally
     one zone, inter-regional capable only) under a lookup timeout
  3. Compute straight-line distance and ETA to the pickup
  4. Drop anything outside the radius, sort by distance, cap the list
  5. Offer the booking to the top-N candidates through the notification
     dispatcher (best-effort)

Matching never assigns a provider; the provider claims the booking via the
lifecycle Accept, which takes the availability lease.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from dispatch.config import Settings, get_settings
from dispatch.models import Booking
from dispatch.redis_client import geo_nearby_providers
from dispatch.repositories.base import UnitOfWorkFactory
from dispatch.schemas.schemas import RideCategoryEnum, ServiceTypeEnum
from dispatch.services.geo import Coordinates, distance_meters, estimate_travel_minutes
from dispatch.services.notifications import NotificationDispatcher
from dispatch.services.pricing import settle

logger = logging.getLogger(__name__)

# service type -> provider category offered the job (None: any category)
SERVICE_CATEGORY: dict[str, Optional[str]] = {
    ServiceTypeEnum.TAXI: RideCategoryEnum.TAXI.value,
    ServiceTypeEnum.SHARED_RIDE: RideCategoryEnum.SHARED.value,
    ServiceTypeEnum.STORE_DELIVERY: "COURIER",
    ServiceTypeEnum.FOOD_DELIVERY: "COURIER",
    ServiceTypeEnum.PACKAGE_DELIVERY: "COURIER",
    ServiceTypeEnum.EMERGENCY: "RESPONDER",
}


@dataclass(frozen=True)
class ProviderCandidate:
    provider_id: str
    category: str
    distance_m: float
    eta_minutes: int


def category_for(booking: Booking) -> Optional[str]:
    if booking.service_type == ServiceTypeEnum.RIDE:
        return booking.payload.ride_category.value
    return SERVICE_CATEGORY.get(booking.service_type)


class ProviderMatcher:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        notifier: NotificationDispatcher,
        redis: Optional[aioredis.Redis] = None,
        settings: Optional[Settings] = None,
    ):
        self.uow_factory = uow_factory
        self.notifier = notifier
        self.redis = redis
        self.settings = settings or get_settings()

    async def _nearby_ids(self, location: Coordinates, category: Optional[str], radius_m: float) -> Optional[list[str]]:
        """Nearest provider ids from the GEO index; None means scan the directory."""
        if self.redis is None or category is None:
            return None
        try:
            return await geo_nearby_providers(
                self.redis,
                category,
                location.lat,
                location.lng,
                radius_m,
                count=self.settings.geo_search_count,
            )
        except RedisError as exc:
            logger.warning("GEO lookup failed for %s, scanning the directory: %s", category, exc)
            return None

    async def _lookup(
        self,
        location: Coordinates,
        category: Optional[str],
        radius_m: float,
        zone_id: Optional[str],
        inter_regional_only: bool,
    ) -> list[ProviderCandidate]:
        nearby_ids = await self._nearby_ids(location, category, radius_m)
        if nearby_ids == []:
            return []
        async with self.uow_factory() as uow:
            providers = await uow.providers.list_available(
                category=category,
                zone_id=zone_id,
                inter_regional_only=inter_regional_only,
                provider_ids=nearby_ids,
            )

        candidates = []
        for p in providers:
            if p.lat is None or p.lng is None:
                continue
            distance = distance_meters(location.lat, location.lng, p.lat, p.lng)
            if distance > radius_m:
                continue
            candidates.append(
                ProviderCandidate(
                    provider_id=p.provider_id,
                    category=p.category,
                    distance_m=round(distance, 1),
                    eta_minutes=estimate_travel_minutes(distance),
                )
            )
        candidates.sort(key=lambda c: c.distance_m)
        return candidates[: self.settings.matching_max_candidates]

    async def find_nearby(
        self,
        location: Coordinates,
        category: Optional[str] = None,
        radius_m: Optional[float] = None,
        zone_id: Optional[str] = None,
        inter_regional_only: bool = False,
    ) -> list[ProviderCandidate]:
        """Nearest eligible providers, ascending distance. Timeout yields an empty list."""
        radius = radius_m if radius_m is not None else self.settings.matching_radius_m
        try:
            return await asyncio.wait_for(
                self._lookup(location, category, radius, zone_id, inter_regional_only),
                timeout=self.settings.provider_lookup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Provider lookup timed out at (%.5f, %.5f) category=%s", location.lat, location.lng, category
            )
            return []

    async def dispatch(
        self,
        booking: Booking,
        *,
        top_n: Optional[int] = None,
        radius_m: Optional[float] = None,
        category: Optional[str] = None,
        zone_id: Optional[str] = None,
        inter_regional_only: bool = False,
    ) -> list[ProviderCandidate]:
        """Offer *booking* to the nearest providers. Returns the providers notified."""
        pickup = Coordinates(booking.pickup_lat, booking.pickup_lng)
        candidates = await self.find_nearby(
            pickup,
            category=category if category is not None else category_for(booking),
            radius_m=radius_m,
            zone_id=zone_id,
            inter_regional_only=inter_regional_only,
        )
        if not candidates:
            logger.info("No providers near booking %s (%s)", booking.booking_number, booking.service_type)
            return []

        notified = candidates[: top_n or self.settings.regular_notify_top_n]
        _, earning = settle(booking.estimated_price, booking.service_type, inter_regional_only)
        for candidate in notified:
            self.notifier.notify(
                candidate.provider_id,
                "booking.offer",
                offer_summary(booking, candidate, earning),
            )
        logger.info(
            "Offered booking %s to %d provider(s)", booking.booking_number, len(notified)
        )
        return notified


def offer_summary(booking: Booking, candidate: ProviderCandidate, earning: Decimal) -> dict:
    return {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "service_type": booking.service_type,
        "pickup": {"lat": booking.pickup_lat, "lng": booking.pickup_lng},
        "dropoff": (
            {"lat": booking.dropoff_lat, "lng": booking.dropoff_lng}
            if booking.dropoff_lat is not None
            else None
        ),
        "estimated_price": str(booking.estimated_price),
        "estimated_earning": str(earning),
        "distance_m": candidate.distance_m,
        "eta_minutes": candidate.eta_minutes,
    }
