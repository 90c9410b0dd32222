"""
Unit tests for pricing: surge computation, fare rules, splitting and settlement.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dispatch.exceptions import PricingUnavailable, ValidationError
from dispatch.services.geo import Coordinates
from dispatch.services.pricing import (
    FareEstimator,
    calculate_delivery_fee,
    calculate_duration_price,
    calculate_ride_fare,
    cancellation_fee,
    compute_surge,
    delivery_type_for,
    settle,
    split_fare,
    surge_for,
    time_multiplier,
)


class TestCalculateRideFare:
    def test_economy_no_surge(self):
        # 3 + 0.5*10 + 0.4*20 = 16
        assert calculate_ride_fare("ECONOMY", 10_000, 20) == Decimal("16")

    def test_premium_multiplier(self):
        # 16 * 1.3 = 20.8 -> 21
        assert calculate_ride_fare("PREMIUM", 10_000, 20) == Decimal("21")

    def test_shared_discount(self):
        # 16 * 0.8 = 12.8 -> 13
        assert calculate_ride_fare("SHARED", 10_000, 20) == Decimal("13")

    def test_surge_applied(self):
        # 16 * 1.2 = 19.2 -> 19
        assert calculate_ride_fare("ECONOMY", 10_000, 20, surge_multiplier=1.2) == Decimal("19")

    def test_minimum_fare(self):
        assert calculate_ride_fare("ECONOMY", 0, 0) == Decimal("5")

    def test_unknown_category_uses_economy_rates(self):
        assert calculate_ride_fare("HOVERCRAFT", 10_000, 20) == Decimal("16")

    def test_rounds_half_up(self):
        # 3 + 0.5*1 + 0.4*5 = 5.5 -> 6
        assert calculate_ride_fare("ECONOMY", 1_000, 5) == Decimal("6")


class TestDeliveryFee:
    def test_package(self):
        # 2 + 0.5*4 = 4.00
        assert calculate_delivery_fee(4_000) == Decimal("4.00")

    def test_food_multiplier_on_base_only(self):
        # 2*1.1 + 0.5*4 = 4.20
        assert calculate_delivery_fee(4_000, "FOOD") == Decimal("4.20")

    def test_delivery_type_by_service(self):
        assert delivery_type_for("FOOD_DELIVERY") == "FOOD"
        assert delivery_type_for("STORE_DELIVERY") == "GROCERY"
        assert delivery_type_for("PACKAGE_DELIVERY") == "PACKAGE"

    def test_delivery_type_rejects_rides(self):
        with pytest.raises(ValidationError):
            delivery_type_for("RIDE")


class TestDurationPricing:
    WEEKDAY_NOON = datetime(2030, 1, 2, 12, 0, tzinfo=timezone.utc)  # Wednesday

    def test_default_rate(self):
        quote = calculate_duration_price(8, self.WEEKDAY_NOON)
        assert quote.hourly_rate == Decimal("12")
        assert quote.price == Decimal("96")
        assert quote.breakdown["base_amount"] == 96.0

    def test_provider_rate_is_capped(self):
        quote = calculate_duration_price(2, self.WEEKDAY_NOON, provider_rate=Decimal("35"))
        assert quote.hourly_rate == Decimal("20")
        assert quote.price == Decimal("40")

    def test_rejects_out_of_range_hours(self):
        with pytest.raises(ValidationError):
            calculate_duration_price(0, self.WEEKDAY_NOON)
        with pytest.raises(ValidationError):
            calculate_duration_price(25, self.WEEKDAY_NOON)

    def test_time_multipliers(self):
        assert time_multiplier(self.WEEKDAY_NOON) == 1.0
        assert time_multiplier(datetime(2030, 1, 2, 8, 0)) == 1.15
        assert time_multiplier(datetime(2030, 1, 2, 23, 0)) == 1.2
        # Saturday evening peak: 1.1 * 1.15
        assert time_multiplier(datetime(2030, 1, 5, 18, 0)) == pytest.approx(1.265)
        # Saturday late night: 1.1 * 1.2 = 1.32
        assert time_multiplier(datetime(2030, 1, 5, 2, 0)) == pytest.approx(1.32)


class TestSplitFare:
    @pytest.mark.parametrize("total", [Decimal("10"), Decimal("13"), Decimal("27"), Decimal("40")])
    @pytest.mark.parametrize("n", [1, 2, 3, 4])
    def test_shares_sum_close_to_total(self, total, n):
        share = split_fare(total, n)
        assert abs(share * n - total) <= Decimal(n) / 2

    def test_half_up(self):
        assert split_fare(Decimal("13"), 2) == Decimal("7")
        assert split_fare(Decimal("10"), 4) == Decimal("3")

    def test_rejects_zero_passengers(self):
        with pytest.raises(ValueError):
            split_fare(Decimal("10"), 0)


class TestSettlement:
    def test_ride_commission(self):
        commission, earning = settle(Decimal("100"), "RIDE")
        assert commission == Decimal("18.00")
        assert earning == Decimal("82.00")

    def test_inter_regional_rate_wins(self):
        commission, earning = settle(Decimal("100"), "RIDE", inter_regional=True)
        assert commission == Decimal("15.00")
        assert earning == Decimal("85.00")

    def test_emergency_is_commission_free(self):
        commission, earning = settle(Decimal("0"), "EMERGENCY")
        assert commission == Decimal("0.00")
        assert earning == Decimal("0.00")

    def test_commission_plus_earning_is_final(self):
        commission, earning = settle(Decimal("33.33"), "TAXI")
        assert commission + earning == Decimal("33.33")


class TestCancellationFee:
    def test_free_before_assignment(self):
        assert cancellation_fee("PENDING", Decimal("40"), by_customer=True) == Decimal("0.00")
        assert cancellation_fee("CONFIRMED", Decimal("40"), by_customer=True) == Decimal("0.00")

    def test_customer_pays_ten_percent_after_assignment(self):
        assert cancellation_fee("DRIVER_ASSIGNED", Decimal("40"), by_customer=True) == Decimal("4.00")

    def test_provider_cancellation_is_free(self):
        assert cancellation_fee("DRIVER_ASSIGNED", Decimal("40"), by_customer=False) == Decimal("0.00")


class TestSurgeFor:
    def test_no_supply(self):
        assert surge_for(5, 0) == 1.1

    def test_low_demand(self):
        assert surge_for(1, 1) == 1.0

    @pytest.mark.parametrize(
        "demand,supply,expected",
        [(2, 2, 1.0), (3, 2, 1.1), (5, 2, 1.2), (8, 2, 1.3), (100, 1, 1.3)],
    )
    def test_ratio_bands(self, demand, supply, expected):
        assert surge_for(demand, supply) == expected


@pytest.mark.asyncio
class TestComputeSurge:
    async def test_no_demand_returns_1x(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value=None)  # 0 demand
        mock_redis.zcard = AsyncMock(return_value=10)  # 10 providers

        result = await compute_surge(mock_redis, "ECONOMY")
        assert result == 1.0
        mock_redis.get.assert_awaited_once_with("surge:demand:ECONOMY")
        mock_redis.zcard.assert_awaited_once_with("providers:geo:ECONOMY")

    async def test_high_demand(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value="20")
        mock_redis.zcard = AsyncMock(return_value=4)

        result = await compute_surge(mock_redis, "ECONOMY")
        assert result == 1.3


@pytest.mark.asyncio
class TestFareEstimator:
    PICKUP = Coordinates(5.5560, -0.1820)
    DROPOFF = Coordinates(5.6508, -0.1870)

    async def test_estimate_without_redis(self):
        quote = await FareEstimator(redis=None).estimate(self.PICKUP, self.DROPOFF, "ECONOMY")
        assert quote.surge_multiplier == 1.0
        assert quote.duration_min == 22
        assert quote.price == calculate_ride_fare("ECONOMY", quote.distance_m, quote.duration_min)

    async def test_redis_failure_falls_back_to_1x(self):
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(side_effect=RedisConnectionError("down"))

        quote = await FareEstimator(redis=mock_redis).estimate(self.PICKUP, self.DROPOFF, "ECONOMY")
        assert quote.surge_multiplier == 1.0

    async def test_timeout_raises_pricing_unavailable(self):
        async def slow_get(key):
            await asyncio.sleep(1)

        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(side_effect=slow_get)

        estimator = FareEstimator(redis=mock_redis, timeout=0.01)
        with pytest.raises(PricingUnavailable):
            await estimator.estimate(self.PICKUP, self.DROPOFF, "ECONOMY")

    async def test_record_demand_sets_ttl(self):
        mock_redis = AsyncMock()
        await FareEstimator(redis=mock_redis).record_demand("TAXI")
        mock_redis.incr.assert_awaited_once_with("surge:demand:TAXI")
        mock_redis.expire.assert_awaited_once_with("surge:demand:TAXI", 120)
