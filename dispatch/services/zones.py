"""
Service-zone classification and inter-regional route rules.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from dispatch.models import ServiceZone
from dispatch.repositories.base import UnitOfWork
from dispatch.services.geo import Coordinates, distance_meters, estimate_travel_minutes
from dispatch.services.pricing import to_dec

logger = logging.getLogger(__name__)

HIGH_RISK_ZONES = frozenset({"Northern", "Upper East", "Upper West"})
INTER_REGIONAL_RATE_PER_KM = Decimal("2")


@dataclass(frozen=True)
class InterRegionalCheck:
    origin: Optional[ServiceZone]
    destination: Optional[ServiceZone]
    permitted: bool
    fee: Decimal = Decimal("0")
    requires_approval: bool = False
    distance_m: float = 0.0
    duration_min: int = 0

    @property
    def is_inter_regional(self) -> bool:
        return (
            self.origin is not None
            and self.destination is not None
            and self.origin.id != self.destination.id
        )


def point_in_polygon(lat: float, lng: float, boundary: Sequence[Sequence[float]]) -> bool:
    """Ray casting over ``[[lat, lng], ...]`` vertices."""
    if not boundary or len(boundary) < 3:
        return False
    inside = False
    j = len(boundary) - 1
    for i in range(len(boundary)):
        lat_i, lng_i = boundary[i][0], boundary[i][1]
        lat_j, lng_j = boundary[j][0], boundary[j][1]
        if (lng_i > lng) != (lng_j > lng):
            crossing = (lat_j - lat_i) * (lng - lng_i) / (lng_j - lng_i) + lat_i
            if lat < crossing:
                inside = not inside
        j = i
    return inside


def locate_zone(zones: Sequence[ServiceZone], point: Coordinates) -> Optional[ServiceZone]:
    """Circular zones win over polygons; within each kind, higher priority first."""
    ordered = sorted(zones, key=lambda z: z.priority, reverse=True)
    for zone in ordered:
        if zone.radius_m and distance_meters(point.lat, point.lng, zone.center_lat, zone.center_lng) <= zone.radius_m:
            return zone
    for zone in ordered:
        if zone.boundary and point_in_polygon(point.lat, point.lng, zone.boundary):
            return zone
    return None


def inter_regional_allowed(origin: ServiceZone, destination: ServiceZone) -> bool:
    return (
        origin.allows_inter_regional
        and destination.allows_inter_regional
        and (
            destination.id in (origin.connected_zone_ids or [])
            or origin.id in (destination.connected_zone_ids or [])
        )
    )


def inter_regional_fee(origin: ServiceZone, destination: ServiceZone, distance_m: float) -> Decimal:
    base = max(Decimal(origin.inter_regional_fee or 0), Decimal(destination.inter_regional_fee or 0))
    return to_dec(base + INTER_REGIONAL_RATE_PER_KM * Decimal(str(distance_m)) / 1000)


def requires_approval(origin: ServiceZone, destination: ServiceZone) -> bool:
    return (
        origin.name in HIGH_RISK_ZONES
        or destination.name in HIGH_RISK_ZONES
        or origin.zone_type == "INTERNATIONAL"
        or destination.zone_type == "INTERNATIONAL"
    )


class ZoneService:
    async def locate(self, uow: UnitOfWork, point: Coordinates) -> Optional[ServiceZone]:
        return locate_zone(await uow.zones.list_active(), point)

    async def check_inter_regional(
        self, uow: UnitOfWork, pickup: Coordinates, dropoff: Coordinates
    ) -> InterRegionalCheck:
        """
        Classify a trip. Unknown or identical zones are a regular trip
        (permitted, no fee); different zones are permitted only when both
        allow inter-regional travel and one lists the other as connected.
        """
        zones = await uow.zones.list_active()
        origin = locate_zone(zones, pickup)
        destination = locate_zone(zones, dropoff)
        if origin is None or destination is None or origin.id == destination.id:
            return InterRegionalCheck(origin=origin, destination=destination, permitted=True)

        if not inter_regional_allowed(origin, destination):
            logger.info("Inter-regional trip %s -> %s not permitted", origin.name, destination.name)
            return InterRegionalCheck(origin=origin, destination=destination, permitted=False)

        distance = distance_meters(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
        return InterRegionalCheck(
            origin=origin,
            destination=destination,
            permitted=True,
            fee=inter_regional_fee(origin, destination, distance),
            requires_approval=requires_approval(origin, destination),
            distance_m=distance,
            duration_min=estimate_travel_minutes(distance),
        )
