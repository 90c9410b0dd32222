"""
Unit tests for geometry helpers and route similarity.
"""
import pytest

from dispatch.services.geo import (
    Route,
    bearing,
    bearing_difference,
    distance_meters,
    estimate_travel_minutes,
    route_similarity,
)

OSU = (5.5560, -0.1820)
LEGON = (5.6508, -0.1870)


class TestDistance:
    def test_same_point_is_zero(self):
        assert distance_meters(*OSU, *OSU) == 0

    def test_known_distance(self):
        # ~10.5 km due north
        d = distance_meters(*OSU, *LEGON)
        assert 10_000 < d < 11_000

    def test_symmetric(self):
        assert distance_meters(*OSU, *LEGON) == pytest.approx(distance_meters(*LEGON, *OSU))


class TestBearing:
    def test_due_north(self):
        assert bearing(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0, abs=1e-6)

    def test_due_east(self):
        assert bearing(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0, abs=1e-6)

    def test_reverse_route_is_opposite(self):
        forward = bearing(*OSU, *LEGON)
        back = bearing(*LEGON, *OSU)
        assert bearing_difference(forward, back) == pytest.approx(1.0, abs=0.01)

    def test_difference_wraps_around(self):
        assert bearing_difference(350, 10) == pytest.approx(20 / 180)


class TestRouteSimilarity:
    def test_identical_routes_score_one(self):
        route = Route.from_points(*OSU, *LEGON)
        assert route_similarity(route, route) == pytest.approx(1.0)

    def test_nearby_pickup_same_dropoff_is_compatible(self):
        a = Route.from_points(*OSU, *LEGON)
        b = Route.from_points(OSU[0] + 0.0027, OSU[1], *LEGON)  # ~300 m apart
        assert route_similarity(a, b) >= 0.70

    def test_far_dropoff_in_another_direction_is_not_compatible(self):
        a = Route.from_points(*OSU, *LEGON)
        b = Route.from_points(*OSU, OSU[0], OSU[1] + 0.095)  # ~10.5 km due east
        assert route_similarity(a, b) < 0.70

    def test_reverse_route_is_not_compatible(self):
        a = Route.from_points(*OSU, *LEGON)
        b = Route.from_points(*LEGON, *OSU)
        assert route_similarity(a, b) < 0.70

    def test_score_is_symmetric_and_bounded(self):
        a = Route.from_points(*OSU, *LEGON)
        b = Route.from_points(5.5600, -0.1900, 5.6400, -0.1750)
        score = route_similarity(a, b)
        assert 0.0 <= score <= 1.0
        assert score == pytest.approx(route_similarity(b, a))

    def test_zero_length_routes(self):
        a = Route.from_points(*OSU, *OSU)
        assert route_similarity(a, a) == pytest.approx(1.0)


class TestTravelTime:
    def test_rounds_up_to_whole_minutes(self):
        assert estimate_travel_minutes(0) == 0
        assert estimate_travel_minutes(1) == 1
        assert estimate_travel_minutes(5000) == 10
        assert estimate_travel_minutes(5001) == 11
