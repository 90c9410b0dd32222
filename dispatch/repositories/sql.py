"""
SQLAlchemy (async) implementations of the storage contracts.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from dispatch.database import AsyncSessionLocal
from dispatch.exceptions import ConcurrencyConflict
from dispatch.models import Booking, ProviderAvailability, ServiceZone, SharedRideGroup, TrackingEvent

logger = logging.getLogger(__name__)


class SqlBookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, booking_id: str) -> Optional[Booking]:
        return await self.session.get(Booking, booking_id)

    async def get_many(self, booking_ids: list[str]) -> list[Booking]:
        if not booking_ids:
            return []
        result = await self.session.execute(select(Booking).where(Booking.id.in_(booking_ids)))
        by_id = {b.id: b for b in result.scalars()}
        return [by_id[i] for i in booking_ids if i in by_id]

    async def add(self, booking: Booking) -> None:
        self.session.add(booking)
        await self.session.flush()

    async def save(self, booking: Booking) -> None:
        booking_id = booking.id
        self.session.add(booking)
        try:
            await self.session.flush()
        except StaleDataError as exc:
            logger.info("Stale write on booking %s", booking_id)
            raise ConcurrencyConflict(f"Booking {booking_id} was modified concurrently") from exc


class SqlGroupRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_key(self, group_key: str) -> Optional[SharedRideGroup]:
        result = await self.session.execute(
            select(SharedRideGroup).where(SharedRideGroup.group_key == group_key)
        )
        return result.scalar_one_or_none()

    async def list_open(self, created_after: datetime) -> list[SharedRideGroup]:
        result = await self.session.execute(
            select(SharedRideGroup)
            .where(
                SharedRideGroup.status == "OPEN",
                SharedRideGroup.accepting_passengers.is_(True),
                SharedRideGroup.created_at >= created_after,
            )
            .order_by(SharedRideGroup.created_at)
        )
        return list(result.scalars())

    async def add(self, group: SharedRideGroup) -> None:
        self.session.add(group)
        await self.session.flush()

    async def save(self, group: SharedRideGroup) -> None:
        # UPDATE ... WHERE version = :seen; zero rows matched raises StaleDataError
        # and leaves the instance unreadable until rollback
        group_key = group.group_key
        self.session.add(group)
        try:
            await self.session.flush()
        except StaleDataError as exc:
            logger.info("Stale write on shared group %s", group_key)
            raise ConcurrencyConflict(f"Shared group {group_key} was modified concurrently") from exc


class SqlProviderDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, provider_id: str) -> Optional[ProviderAvailability]:
        return await self.session.get(ProviderAvailability, provider_id)

    async def list_available(
        self,
        category: Optional[str] = None,
        zone_id: Optional[str] = None,
        inter_regional_only: bool = False,
        provider_ids: Optional[list[str]] = None,
    ) -> list[ProviderAvailability]:
        stmt = select(ProviderAvailability).where(
            ProviderAvailability.is_online.is_(True),
            ProviderAvailability.is_available.is_(True),
            ProviderAvailability.is_verified.is_(True),
            ProviderAvailability.lat.is_not(None),
            ProviderAvailability.lng.is_not(None),
        )
        if category:
            stmt = stmt.where(ProviderAvailability.category == category)
        if zone_id:
            stmt = stmt.where(ProviderAvailability.zone_id == zone_id)
        if inter_regional_only:
            stmt = stmt.where(ProviderAvailability.accepts_inter_regional.is_(True))
        if provider_ids is not None:
            stmt = stmt.where(ProviderAvailability.provider_id.in_(provider_ids))
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def _conditional_update(self, stmt) -> bool:
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount == 1

    async def acquire(self, provider_id: str, booking_id: str) -> bool:
        return await self._conditional_update(
            update(ProviderAvailability)
            .where(
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.is_available.is_(True),
            )
            .values(is_available=False, current_booking_id=booking_id)
        )

    async def transfer(self, provider_id: str, from_booking_id: str, to_booking_id: str) -> bool:
        return await self._conditional_update(
            update(ProviderAvailability)
            .where(
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.current_booking_id == from_booking_id,
            )
            .values(current_booking_id=to_booking_id)
        )

    async def release(self, provider_id: str, booking_id: str) -> bool:
        return await self._conditional_update(
            update(ProviderAvailability)
            .where(
                ProviderAvailability.provider_id == provider_id,
                ProviderAvailability.current_booking_id == booking_id,
            )
            .values(is_available=True, current_booking_id=None)
        )

    async def record_completion(self, provider_id: str, earning: Decimal, commission: Decimal) -> None:
        await self.session.execute(
            update(ProviderAvailability)
            .where(ProviderAvailability.provider_id == provider_id)
            .values(
                total_jobs=ProviderAvailability.total_jobs + 1,
                total_earnings=ProviderAvailability.total_earnings + earning,
                monthly_earnings=ProviderAvailability.monthly_earnings + earning,
                monthly_commission_due=ProviderAvailability.monthly_commission_due + commission,
            )
            .execution_options(synchronize_session=False)
        )

    async def update_location(self, provider_id: str, lat: float, lng: float, at: datetime) -> bool:
        return await self._conditional_update(
            update(ProviderAvailability)
            .where(ProviderAvailability.provider_id == provider_id)
            .values(lat=lat, lng=lng, location_updated_at=at)
        )

    async def set_online(self, provider_id: str, online: bool) -> bool:
        return await self._conditional_update(
            update(ProviderAvailability)
            .where(ProviderAvailability.provider_id == provider_id)
            .values(is_online=online)
        )


class SqlZoneRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, zone_id: str) -> Optional[ServiceZone]:
        return await self.session.get(ServiceZone, zone_id)

    async def list_active(self) -> list[ServiceZone]:
        result = await self.session.execute(
            select(ServiceZone).where(ServiceZone.is_active.is_(True)).order_by(ServiceZone.priority.desc())
        )
        return list(result.scalars())


class SqlTrackingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, event: TrackingEvent) -> None:
        self.session.add(event)

    async def list_for_booking(self, booking_id: str) -> list[TrackingEvent]:
        result = await self.session.execute(
            select(TrackingEvent)
            .where(TrackingEvent.booking_id == booking_id)
            .order_by(TrackingEvent.recorded_at)
        )
        return list(result.scalars())


class SqlUnitOfWork:
    """One ``AsyncSession`` per unit of work; rolled back on error, closed on exit."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory

    async def __aenter__(self) -> "SqlUnitOfWork":
        self.session = self._session_factory()
        self.bookings = SqlBookingRepository(self.session)
        self.groups = SqlGroupRepository(self.session)
        self.providers = SqlProviderDirectory(self.session)
        self.zones = SqlZoneRepository(self.session)
        self.tracking = SqlTrackingRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.session.rollback()
        await self.session.close()

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            raise ConcurrencyConflict("Concurrent modification detected on commit") from exc

    async def rollback(self) -> None:
        await self.session.rollback()
