"""
Storage contracts used by the dispatch services.

Every service operation runs inside one ``UnitOfWork``: reads and writes go
through the repositories it exposes and become visible to others only on
``commit()``. ``BookingRepository.save`` and ``GroupRepository.save`` are
compare-and-swap writes on the row's ``version`` and raise
``ConcurrencyConflict`` when another writer got there first.
"""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Protocol

from dispatch.models import Booking, ProviderAvailability, ServiceZone, SharedRideGroup, TrackingEvent


class BookingRepository(Protocol):
    async def get(self, booking_id: str) -> Optional[Booking]: ...

    async def get_many(self, booking_ids: list[str]) -> list[Booking]: ...

    async def add(self, booking: Booking) -> None: ...

    async def save(self, booking: Booking) -> None: ...


class GroupRepository(Protocol):
    async def get_by_key(self, group_key: str) -> Optional[SharedRideGroup]: ...

    async def list_open(self, created_after: datetime) -> list[SharedRideGroup]: ...

    async def add(self, group: SharedRideGroup) -> None: ...

    async def save(self, group: SharedRideGroup) -> None: ...


class ProviderDirectory(Protocol):
    async def get(self, provider_id: str) -> Optional[ProviderAvailability]: ...

    async def list_available(
        self,
        category: Optional[str] = None,
        zone_id: Optional[str] = None,
        inter_regional_only: bool = False,
        provider_ids: Optional[list[str]] = None,
    ) -> list[ProviderAvailability]: ...

    async def acquire(self, provider_id: str, booking_id: str) -> bool:
        """Take the provider for *booking_id* iff it is currently available."""
        ...

    async def transfer(self, provider_id: str, from_booking_id: str, to_booking_id: str) -> bool: ...

    async def release(self, provider_id: str, booking_id: str) -> bool:
        """Free the provider iff *booking_id* still holds it."""
        ...

    async def record_completion(self, provider_id: str, earning: Decimal, commission: Decimal) -> None: ...

    async def update_location(self, provider_id: str, lat: float, lng: float, at: datetime) -> bool: ...

    async def set_online(self, provider_id: str, online: bool) -> bool: ...


class ZoneRepository(Protocol):
    async def get(self, zone_id: str) -> Optional[ServiceZone]: ...

    async def list_active(self) -> list[ServiceZone]: ...


class TrackingRepository(Protocol):
    async def append(self, event: TrackingEvent) -> None: ...

    async def list_for_booking(self, booking_id: str) -> list[TrackingEvent]: ...


class UnitOfWork(Protocol):
    bookings: BookingRepository
    groups: GroupRepository
    providers: ProviderDirectory
    zones: ZoneRepository
    tracking: TrackingRepository

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
