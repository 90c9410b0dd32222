"""
Fare estimation, surge, fare splitting and commission rules.

All money is ``Decimal``; rounding is half-up. The demand/supply surge ratio
is read from Redis:

  surge:demand:{category}   – recent booking requests (incr on create, 120 s TTL)
  providers:geo:{category}  – GEO set of online providers (maintained by location pushes)
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from dispatch.config import get_settings
from dispatch.exceptions import PricingUnavailable, ValidationError
from dispatch.schemas.schemas import (
    DELIVERY_SERVICES,
    BookingStatusEnum,
    DeliveryTypeEnum,
    RideCategoryEnum,
    ServiceTypeEnum,
)
from dispatch.services.geo import Coordinates, distance_meters, estimate_travel_minutes

logger = logging.getLogger(__name__)
settings = get_settings()

WHOLE = Decimal("1")
CENT = Decimal("0.01")


def to_dec(value, exp: Decimal = CENT) -> Decimal:
    return Decimal(str(value)).quantize(exp, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Tariffs (GHS)
# ---------------------------------------------------------------------------
RIDE_BASE_FARE = Decimal("3")
RIDE_RATE_PER_KM = Decimal("0.5")
RIDE_RATE_PER_MIN = Decimal("0.4")

CATEGORY_MULTIPLIER: dict[str, float] = {
    RideCategoryEnum.ECONOMY: 1.0,
    RideCategoryEnum.COMFORT: 1.15,
    RideCategoryEnum.PREMIUM: 1.3,
    RideCategoryEnum.SUV: 1.2,
    RideCategoryEnum.SHARED: 0.8,
    RideCategoryEnum.TAXI: 1.1,
}

DELIVERY_BASE_FEE = Decimal("2")
DELIVERY_RATE_PER_KM = Decimal("0.5")
DELIVERY_MULTIPLIER: dict[str, float] = {
    DeliveryTypeEnum.PACKAGE: 1.0,
    DeliveryTypeEnum.FOOD: 1.1,
    DeliveryTypeEnum.GROCERY: 1.05,
    DeliveryTypeEnum.PHARMACY: 1.15,
    DeliveryTypeEnum.DOCUMENTS: 0.9,
}

DEFAULT_HOURLY_RATE = Decimal("12")
MAX_HOURLY_RATE = Decimal("20")
MOVING_HOURS = 8

WEEKEND_MULTIPLIER = 1.1
PEAK_MULTIPLIER = 1.15
LATE_NIGHT_MULTIPLIER = 1.2
MAX_TIME_MULTIPLIER = 1.35

COMMISSION_RATE: dict[str, Decimal] = {
    ServiceTypeEnum.RIDE: Decimal("0.18"),
    ServiceTypeEnum.TAXI: Decimal("0.15"),
    ServiceTypeEnum.SHARED_RIDE: Decimal("0.15"),
    ServiceTypeEnum.STORE_DELIVERY: Decimal("0.18"),
    ServiceTypeEnum.FOOD_DELIVERY: Decimal("0.18"),
    ServiceTypeEnum.PACKAGE_DELIVERY: Decimal("0.18"),
    ServiceTypeEnum.HOUSE_MOVING: Decimal("0.15"),
    ServiceTypeEnum.DAY_BOOKING: Decimal("0.15"),
    ServiceTypeEnum.EMERGENCY: Decimal("0"),
}


@dataclass(frozen=True)
class FareQuote:
    price: Decimal
    distance_m: float
    duration_min: int
    surge_multiplier: float
    category: str


@dataclass(frozen=True)
class DurationQuote:
    price: Decimal
    hourly_rate: Decimal
    hours: int
    time_multiplier: float

    @property
    def breakdown(self) -> dict[str, float]:
        return {
            "hourly_rate": float(self.hourly_rate),
            "hours": float(self.hours),
            "base_amount": float(self.hourly_rate * self.hours),
            "time_multiplier": self.time_multiplier,
        }


# ---------------------------------------------------------------------------
# Surge computation
# ---------------------------------------------------------------------------

def surge_for(demand: int, supply: int) -> float:
    """
    Demand-driven multiplier, capped at ``max_surge_multiplier``.

    No supply at all gets a flat 1.1; fewer than two recent requests never
    surge.
    """
    if supply <= 0:
        multiplier = 1.1
    elif demand < 2:
        multiplier = 1.0
    else:
        ratio = demand / supply
        if ratio >= 4.0:
            multiplier = 1.3
        elif ratio >= 2.5:
            multiplier = 1.2
        elif ratio >= 1.5:
            multiplier = 1.1
        else:
            multiplier = 1.0
    return round(min(multiplier, settings.max_surge_multiplier), 2)


async def compute_surge(redis: aioredis.Redis, category: str) -> float:
    demand_raw = await redis.get(f"surge:demand:{category}")
    supply_raw = await redis.zcard(f"providers:geo:{category}")
    return surge_for(int(demand_raw or 0), int(supply_raw or 0))


async def increment_demand(redis: aioredis.Redis, category: str) -> None:
    """Call when a new booking is requested."""
    await redis.incr(f"surge:demand:{category}")
    await redis.expire(f"surge:demand:{category}", 120)  # 2-minute demand window


# ---------------------------------------------------------------------------
# Pure fare rules
# ---------------------------------------------------------------------------

def calculate_ride_fare(
    category: str,
    distance_m: float,
    duration_min: int,
    surge_multiplier: float = 1.0,
) -> Decimal:
    """(base + per-km + per-minute) x category x surge, floored at the minimum fare, whole units."""
    distance_km = Decimal(str(distance_m)) / 1000
    subtotal = RIDE_BASE_FARE + RIDE_RATE_PER_KM * distance_km + RIDE_RATE_PER_MIN * duration_min
    multiplier = Decimal(str(CATEGORY_MULTIPLIER.get(category, 1.0))) * Decimal(str(surge_multiplier))
    return max(to_dec(subtotal * multiplier, WHOLE), Decimal(settings.minimum_fare))


def calculate_delivery_fee(distance_m: float, delivery_type: str = DeliveryTypeEnum.PACKAGE) -> Decimal:
    multiplier = Decimal(str(DELIVERY_MULTIPLIER.get(delivery_type, 1.0)))
    distance_km = Decimal(str(distance_m)) / 1000
    return to_dec(DELIVERY_BASE_FEE * multiplier + DELIVERY_RATE_PER_KM * distance_km)


def time_multiplier(at: datetime) -> float:
    multiplier = 1.0
    if at.weekday() >= 5:
        multiplier *= WEEKEND_MULTIPLIER
    if 7 <= at.hour <= 9 or 17 <= at.hour <= 19:
        multiplier *= PEAK_MULTIPLIER
    elif at.hour >= 22 or at.hour <= 6:
        multiplier *= LATE_NIGHT_MULTIPLIER
    return round(min(multiplier, MAX_TIME_MULTIPLIER), 4)


def calculate_duration_price(
    hours: int,
    scheduled_at: datetime,
    provider_rate: Optional[Decimal] = None,
) -> DurationQuote:
    """Hourly pricing for day bookings and house moves."""
    if hours <= 0 or hours > 24:
        raise ValidationError("Duration must be between 1 and 24 hours")
    rate = min(Decimal(str(provider_rate)), MAX_HOURLY_RATE) if provider_rate else DEFAULT_HOURLY_RATE
    multiplier = time_multiplier(scheduled_at)
    total = to_dec(rate * hours * Decimal(str(multiplier)), WHOLE)
    return DurationQuote(
        price=max(total, Decimal(settings.minimum_fare)),
        hourly_rate=rate,
        hours=hours,
        time_multiplier=multiplier,
    )


def split_fare(total: Decimal, passengers: int) -> Decimal:
    """Per-passenger share: ``round_half_up(total / n)`` in whole currency units."""
    if passengers < 1:
        raise ValueError("passengers must be >= 1")
    return to_dec(Decimal(total) / passengers, WHOLE)


def commission_rate(service_type: str, inter_regional: bool = False) -> Decimal:
    if inter_regional:
        return Decimal(str(settings.inter_regional_commission_rate))
    return COMMISSION_RATE[ServiceTypeEnum(service_type)]


def settle(final_price: Decimal, service_type: str, inter_regional: bool = False) -> tuple[Decimal, Decimal]:
    """Returns (platform_commission, provider_earning)."""
    commission = to_dec(Decimal(final_price) * commission_rate(service_type, inter_regional))
    return commission, to_dec(Decimal(final_price) - commission)


def cancellation_fee(status: str, estimated_price: Decimal, by_customer: bool) -> Decimal:
    """Only a customer backing out after a provider was assigned pays a fee."""
    if by_customer and BookingStatusEnum(status) == BookingStatusEnum.DRIVER_ASSIGNED:
        return to_dec(Decimal(estimated_price) * Decimal(str(settings.customer_cancellation_fee_rate)))
    return Decimal("0.00")


def delivery_type_for(service_type: str) -> str:
    if service_type not in DELIVERY_SERVICES:
        raise ValidationError(f"{service_type} is not a delivery service")
    if service_type == ServiceTypeEnum.FOOD_DELIVERY:
        return DeliveryTypeEnum.FOOD
    if service_type == ServiceTypeEnum.STORE_DELIVERY:
        return DeliveryTypeEnum.GROCERY
    return DeliveryTypeEnum.PACKAGE


# ---------------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------------

class FareEstimator:
    """Async fare estimator; every estimate runs under a timeout."""

    def __init__(self, redis: Optional[aioredis.Redis] = None, timeout: Optional[float] = None):
        self.redis = redis
        self.timeout = timeout if timeout is not None else settings.fare_estimate_timeout_seconds

    async def _surge(self, category: str) -> float:
        if self.redis is None:
            return 1.0
        try:
            return await compute_surge(self.redis, category)
        except RedisError as exc:
            logger.warning("Surge lookup failed for %s, using 1.0x: %s", category, exc)
            return 1.0

    async def _estimate(self, pickup: Coordinates, dropoff: Coordinates, category: str) -> FareQuote:
        distance = distance_meters(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
        duration = estimate_travel_minutes(distance)
        surge = await self._surge(category)
        return FareQuote(
            price=calculate_ride_fare(category, distance, duration, surge),
            distance_m=distance,
            duration_min=duration,
            surge_multiplier=surge,
            category=category,
        )

    async def estimate(self, pickup: Coordinates, dropoff: Coordinates, category: str) -> FareQuote:
        try:
            return await asyncio.wait_for(self._estimate(pickup, dropoff, category), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Fare estimate timed out after %.1fs (category=%s)", self.timeout, category)
            raise PricingUnavailable("Fare estimate timed out") from exc

    async def estimate_delivery(
        self,
        pickup: Coordinates,
        dropoff: Coordinates,
        delivery_type: str = DeliveryTypeEnum.PACKAGE,
    ) -> Decimal:
        distance = distance_meters(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
        return calculate_delivery_fee(distance, delivery_type)

    async def record_demand(self, category: str) -> None:
        if self.redis is None:
            return
        try:
            await increment_demand(self.redis, category)
        except RedisError as exc:
            logger.warning("Could not record demand for %s: %s", category, exc)
