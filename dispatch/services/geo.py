"""
Great-circle geometry and route similarity.

Pure functions only; everything here works on plain coordinates in degrees
and distances in metres.
"""
import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000
AVERAGE_SPEED_M_PER_MIN = 500  # 30 km/h city average

# Similarity weights and fall-off distances
PICKUP_WEIGHT = 0.30
DROPOFF_WEIGHT = 0.30
BEARING_WEIGHT = 0.25
LENGTH_WEIGHT = 0.15
PICKUP_FALLOFF_M = 2000.0
DROPOFF_FALLOFF_M = 3000.0
BEARING_FALLOFF = 0.25


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(frozen=True)
class Route:
    pickup: Coordinates
    dropoff: Coordinates

    @classmethod
    def from_points(cls, pickup_lat: float, pickup_lng: float, dropoff_lat: float, dropoff_lng: float) -> "Route":
        return cls(Coordinates(pickup_lat, pickup_lng), Coordinates(dropoff_lat, dropoff_lng))

    @property
    def length_m(self) -> float:
        return distance_meters(self.pickup.lat, self.pickup.lng, self.dropoff.lat, self.dropoff.lng)

    @property
    def bearing(self) -> float:
        return bearing(self.pickup.lat, self.pickup.lng, self.dropoff.lat, self.dropoff.lng)


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, in [0, 360)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dlambda = math.radians(lng2 - lng1)
    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def bearing_difference(b1: float, b2: float) -> float:
    """Smallest angle between two bearings, normalised to [0, 1]."""
    delta = abs(b1 - b2) % 360
    return min(delta, 360 - delta) / 180


def route_similarity(a: Route, b: Route) -> float:
    """
    Score in [0, 1] of how well two routes can share one vehicle.

    Weighted blend of pickup proximity, dropoff proximity, heading agreement
    and relative trip length.
    """
    pickup_d = distance_meters(a.pickup.lat, a.pickup.lng, b.pickup.lat, b.pickup.lng)
    dropoff_d = distance_meters(a.dropoff.lat, a.dropoff.lng, b.dropoff.lat, b.dropoff.lng)
    pickup_score = max(0.0, 1 - pickup_d / PICKUP_FALLOFF_M)
    dropoff_score = max(0.0, 1 - dropoff_d / DROPOFF_FALLOFF_M)

    bearing_score = max(0.0, 1 - bearing_difference(a.bearing, b.bearing) / BEARING_FALLOFF)

    len_a, len_b = a.length_m, b.length_m
    longest = max(len_a, len_b)
    ratio = 1.0 if longest == 0 else min(len_a, len_b) / longest
    length_score = min(1.0, 2 * ratio)

    score = (
        PICKUP_WEIGHT * pickup_score
        + DROPOFF_WEIGHT * dropoff_score
        + BEARING_WEIGHT * bearing_score
        + LENGTH_WEIGHT * length_score
    )
    return min(1.0, max(0.0, score))


def estimate_travel_minutes(distance_m: float) -> int:
    return math.ceil(distance_m / AVERAGE_SPEED_M_PER_MIN)
