"""
Shared-ride group formation.

A request joins the most similar open group (similarity >= threshold,
created within the grouping window, seats left) or starts a new one. Every
join rewrites the whole roster: the group total is re-split evenly
(``round_half_up(total / n)``) and every member booking is repriced in the
same unit of work as the group write.

Group writes are compare-and-swap on ``SharedRideGroup.version``. A join
that loses the race is retried from a fresh read, up to
``group_join_max_attempts`` times.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from dispatch.config import Settings, get_settings
from dispatch.exceptions import ConcurrencyConflict
from dispatch.models import Booking, SharedRideGroup
from dispatch.models.booking import utcnow
from dispatch.repositories.base import UnitOfWork, UnitOfWorkFactory
from dispatch.schemas.schemas import (
    BookingStatusEnum,
    GroupStatusEnum,
    RequestModeEnum,
    RideCategoryEnum,
    ServiceTypeEnum,
    SharedRideServiceData,
)
from dispatch.services import identifiers
from dispatch.services.geo import Route, estimate_travel_minutes, route_similarity
from dispatch.services.pricing import FareEstimator, split_fare

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompatibleGroup:
    group: SharedRideGroup
    similarity: float

    @property
    def current_share(self) -> Decimal:
        return split_fare(self.group.total_price, max(self.group.passenger_count, 1))


@dataclass(frozen=True)
class JoinResult:
    booking: Booking
    group: SharedRideGroup
    joined: bool
    similarity: Optional[float] = None


def group_route(group: SharedRideGroup) -> Route:
    return Route.from_points(group.pickup_lat, group.pickup_lng, group.dropoff_lat, group.dropoff_lng)


class SharedRideGroupManager:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        estimator: FareEstimator,
        settings: Optional[Settings] = None,
    ):
        self.uow_factory = uow_factory
        self.estimator = estimator
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _compatible(self, uow: UnitOfWork, route: Route) -> list[CompatibleGroup]:
        since = utcnow() - timedelta(minutes=self.settings.shared_group_window_minutes)
        matches = []
        for group in await uow.groups.list_open(since):
            if not group.accepting_passengers or not group.has_capacity:
                continue
            score = route_similarity(route, group_route(group))
            if score >= self.settings.similarity_threshold:
                matches.append(CompatibleGroup(group=group, similarity=score))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    async def find_compatible_groups(self, route: Route) -> list[CompatibleGroup]:
        async with self.uow_factory() as uow:
            return await self._compatible(uow, route)

    async def member_booking_ids(self, group_key: str) -> list[str]:
        async with self.uow_factory() as uow:
            group = await uow.groups.get_by_key(group_key)
            return group.member_booking_ids() if group else []

    # ------------------------------------------------------------------
    # Join / create
    # ------------------------------------------------------------------

    async def join_or_create(self, customer_id: str, route: Route) -> JoinResult:
        attempts = self.settings.group_join_max_attempts
        for attempt in range(1, attempts + 1):
            async with self.uow_factory() as uow:
                matches = await self._compatible(uow, route)
                if not matches:
                    break
                best = matches[0]
                group_key = best.group.group_key
                try:
                    booking = await self._join(uow, best.group, customer_id, route)
                    await uow.commit()
                except ConcurrencyConflict:
                    await uow.rollback()
                    logger.warning("Join conflict on group %s (attempt %d/%d)", group_key, attempt, attempts)
                    continue
            logger.info(
                "Customer %s joined shared group %s (similarity=%.2f, passengers=%d)",
                customer_id, group_key, best.similarity, best.group.passenger_count,
            )
            return JoinResult(booking=booking, group=best.group, joined=True, similarity=best.similarity)
        else:
            raise ConcurrencyConflict(f"Could not join a shared group after {attempts} attempts")

        return await self._create(customer_id, route)

    async def _join(self, uow: UnitOfWork, group: SharedRideGroup, customer_id: str, route: Route) -> Booking:
        n = group.passenger_count + 1
        share = split_fare(group.total_price, n)
        full = n >= group.max_passengers
        now = utcnow()

        booking = _shared_booking(customer_id, route, share, now, self.settings.currency)
        booking.payload = SharedRideServiceData(
            group_key=group.group_key,
            is_group_leader=False,
            max_passengers=group.max_passengers,
            passenger_count=n,
            waiting_for_more_passengers=not full,
            solo_price=group.total_price,
            estimated_savings=group.total_price - share,
        )

        existing_ids = group.member_booking_ids()
        group.members = [{**m, "share": str(share)} for m in group.members] + [
            _member(booking, share, now)
        ]
        if full:
            group.accepting_passengers = False

        # CAS first: a stale group aborts before any booking is touched
        await uow.groups.save(group)
        await uow.bookings.add(booking)
        for member in await uow.bookings.get_many(existing_ids):
            _reprice(member, share, n, full)
            await uow.bookings.save(member)
        return booking

    async def _create(self, customer_id: str, route: Route) -> JoinResult:
        quote = await self.estimator.estimate(route.pickup, route.dropoff, RideCategoryEnum.SHARED.value)
        now = utcnow()
        key = identifiers.group_key()

        booking = _shared_booking(customer_id, route, quote.price, now, self.settings.currency)
        booking.payload = SharedRideServiceData(
            group_key=key,
            is_group_leader=True,
            max_passengers=self.settings.shared_max_passengers,
            passenger_count=1,
            waiting_for_more_passengers=True,
            solo_price=quote.price,
        )
        group = SharedRideGroup(
            id=str(uuid.uuid4()),
            group_key=key,
            leader_booking_id=booking.id,
            status=GroupStatusEnum.OPEN.value,
            accepting_passengers=True,
            max_passengers=self.settings.shared_max_passengers,
            total_price=quote.price,
            pickup_lat=route.pickup.lat,
            pickup_lng=route.pickup.lng,
            dropoff_lat=route.dropoff.lat,
            dropoff_lng=route.dropoff.lng,
            members=[_member(booking, quote.price, now)],
            created_at=now,
        )
        async with self.uow_factory() as uow:
            await uow.bookings.add(booking)
            await uow.groups.add(group)
            await uow.commit()
        logger.info("Customer %s started shared group %s (price=%s)", customer_id, key, quote.price)
        return JoinResult(booking=booking, group=group, joined=False)

    # ------------------------------------------------------------------
    # Roster changes driven by the booking lifecycle
    # ------------------------------------------------------------------

    async def close(self, uow: UnitOfWork, group_key: str) -> Optional[SharedRideGroup]:
        """Stop taking passengers. Runs inside the caller's unit of work."""
        group = await uow.groups.get_by_key(group_key)
        if group is None or group.status == GroupStatusEnum.CLOSED:
            return group
        group.status = GroupStatusEnum.CLOSED.value
        group.accepting_passengers = False
        await uow.groups.save(group)
        bookings = await uow.bookings.get_many(group.member_booking_ids())
        for member in bookings:
            data = member.payload
            if data.waiting_for_more_passengers:
                data.waiting_for_more_passengers = False
                member.payload = data
                await uow.bookings.save(member)
        logger.info("Shared group %s closed", group_key)
        return group

    async def leave(self, uow: UnitOfWork, booking: Booking) -> Optional[SharedRideGroup]:
        """
        Take *booking* off its group's roster and re-split the total among
        the members left. The next member in join order inherits leadership;
        a group left empty is closed.
        """
        data = booking.payload
        group = await uow.groups.get_by_key(data.group_key)
        if group is None or booking.id not in group.member_booking_ids():
            return group

        remaining = [dict(m) for m in group.members if m["booking_id"] != booking.id]
        if not remaining:
            group.members = []
            group.status = GroupStatusEnum.CLOSED.value
            group.accepting_passengers = False
            await uow.groups.save(group)
            logger.info("Shared group %s emptied and closed", group.group_key)
            return group

        n = len(remaining)
        share = split_fare(group.total_price, n)
        for m in remaining:
            m["share"] = str(share)
        group.members = remaining
        if group.leader_booking_id == booking.id:
            group.leader_booking_id = remaining[0]["booking_id"]
        if group.status == GroupStatusEnum.OPEN:
            group.accepting_passengers = True
        await uow.groups.save(group)

        for member in await uow.bookings.get_many([m["booking_id"] for m in remaining]):
            if member.is_terminal:
                continue
            _reprice(
                member,
                share,
                n,
                full=not group.accepting_passengers,
                leader=member.id == group.leader_booking_id,
            )
            await uow.bookings.save(member)
        logger.info(
            "Booking %s left shared group %s (%d passenger(s) remain)", booking.id, group.group_key, n
        )
        return group


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _shared_booking(customer_id: str, route: Route, price: Decimal, now, currency: str) -> Booking:
    return Booking(
        id=str(uuid.uuid4()),
        booking_number=identifiers.booking_number("TRP"),
        customer_id=customer_id,
        service_type=ServiceTypeEnum.SHARED_RIDE.value,
        request_mode=RequestModeEnum.IMMEDIATE.value,
        status=BookingStatusEnum.PENDING.value,
        pickup_lat=route.pickup.lat,
        pickup_lng=route.pickup.lng,
        dropoff_lat=route.dropoff.lat,
        dropoff_lng=route.dropoff.lng,
        estimated_distance_m=route.length_m,
        estimated_duration_min=estimate_travel_minutes(route.length_m),
        estimated_price=price,
        currency=currency,
        service_data={},
        created_at=now,
    )


def _member(booking: Booking, share: Decimal, now) -> dict:
    return {
        "booking_id": booking.id,
        "customer_id": booking.customer_id,
        "share": str(share),
        "joined_at": now.isoformat(),
    }


def _reprice(member: Booking, share: Decimal, n: int, full: bool, leader: Optional[bool] = None) -> None:
    data = member.payload
    data.passenger_count = n
    data.waiting_for_more_passengers = not full
    data.estimated_savings = max(data.solo_price - share, Decimal("0"))
    if leader is not None:
        data.is_group_leader = leader
    member.estimated_price = share
    member.payload = data
