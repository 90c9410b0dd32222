"""
Booking lifecycle: accept, assign, arrive, start, complete, cancel,
reject, fail, plus the read-side status and tracking projections.

Each operation is one unit of work. Preconditions are checked before
anything is written, so a refused call leaves the booking untouched. The
provider's availability lease is taken and released in the same unit of
work as the status change that causes it. Notifications go out only after
commit and never fail the operation.
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional

from dispatch.config import Settings, get_settings
from dispatch.exceptions import AccessDenied, InvalidState, NotFound, ProviderUnavailable, ValidationError
from dispatch.models import Booking, TrackingEvent
from dispatch.models.booking import utcnow
from dispatch.repositories.base import UnitOfWork, UnitOfWorkFactory
from dispatch.schemas.schemas import BookingStatusEnum as S, ServiceTypeEnum
from dispatch.services.groups import SharedRideGroupManager
from dispatch.services.notifications import NotificationDispatcher
from dispatch.services.pricing import cancellation_fee, settle

logger = logging.getLogger(__name__)

CANCELLABLE = frozenset({S.PENDING, S.CONFIRMED, S.DRIVER_ASSIGNED})
ACTIVE = frozenset({S.DRIVER_ASSIGNED, S.DRIVER_ARRIVED, S.IN_PROGRESS})


def _is_shared(booking: Booking) -> bool:
    return booking.service_type == ServiceTypeEnum.SHARED_RIDE


def _is_inter_regional(booking: Booking) -> bool:
    data = booking.payload
    return getattr(data, "inter_regional", None) is not None


def _require_status(booking: Booking, allowed: frozenset, attempted: S) -> None:
    if S(booking.status) not in allowed:
        raise InvalidState(attempted.value, booking.status)


def _require_provider(booking: Booking, provider_id: str) -> None:
    if booking.provider_id != provider_id:
        raise AccessDenied(f"Provider {provider_id} is not assigned to booking {booking.id}")


class BookingLifecycleManager:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        groups: SharedRideGroupManager,
        notifier: NotificationDispatcher,
        settings: Optional[Settings] = None,
    ):
        self.uow_factory = uow_factory
        self.groups = groups
        self.notifier = notifier
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _load(uow: UnitOfWork, booking_id: str) -> Booking:
        booking = await uow.bookings.get(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    async def _take_provider(uow: UnitOfWork, booking: Booking, provider_id: str) -> None:
        provider = await uow.providers.get(provider_id)
        if provider is None:
            raise NotFound(f"Provider {provider_id} not found")
        inter = getattr(booking.payload, "inter_regional", None)
        if inter is not None:
            if inter.requires_approval and not inter.approved:
                raise InvalidState(
                    S.DRIVER_ASSIGNED.value,
                    booking.status,
                    f"Booking {booking.id} is awaiting inter-regional approval",
                )
            if not provider.accepts_inter_regional:
                raise AccessDenied(f"Provider {provider_id} does not take inter-regional trips")
        if not await uow.providers.acquire(provider_id, booking.id):
            raise ProviderUnavailable(f"Provider {provider_id} is not available")

    async def _release_provider(self, uow: UnitOfWork, booking: Booking) -> None:
        """Free the provider, or hand the lease to a shared-ride sibling still on board."""
        if booking.provider_id is None:
            return
        if _is_shared(booking):
            group = await uow.groups.get_by_key(booking.payload.group_key)
            sibling_ids = [i for i in (group.member_booking_ids() if group else []) if i != booking.id]
            for sibling in await uow.bookings.get_many(sibling_ids):
                if sibling.provider_id == booking.provider_id and S(sibling.status) in ACTIVE:
                    if await uow.providers.transfer(booking.provider_id, booking.id, sibling.id):
                        return
        await uow.providers.release(booking.provider_id, booking.id)

    @staticmethod
    async def _track(
        uow: UnitOfWork,
        booking: Booking,
        message: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
    ) -> TrackingEvent:
        event = TrackingEvent(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            status=booking.status,
            message=message,
            lat=lat,
            lng=lng,
            heading=heading,
            speed=speed,
            recorded_at=utcnow(),
        )
        await uow.tracking.append(event)
        return event

    def _notify(self, recipient_id: Optional[str], event: str, booking: Booking, **extra) -> None:
        if recipient_id is None:
            return
        data = {
            "booking_id": booking.id,
            "booking_number": booking.booking_number,
            "status": booking.status,
            **extra,
        }
        self.notifier.notify(recipient_id, event, data)

    # ------------------------------------------------------------------
    # Provider-driven transitions
    # ------------------------------------------------------------------

    async def accept(self, booking_id: str, provider_id: str) -> Booking:
        """PENDING -> DRIVER_ASSIGNED. Accepting a shared-ride member takes the whole group."""
        siblings: list[Booking] = []
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            _require_status(booking, frozenset({S.PENDING}), S.DRIVER_ASSIGNED)
            await self._take_provider(uow, booking, provider_id)

            booking.provider_id = provider_id
            booking.transition_to(S.DRIVER_ASSIGNED)
            await uow.bookings.save(booking)
            await self._track(uow, booking, "Provider accepted the booking")

            if _is_shared(booking):
                group = await self.groups.close(uow, booking.payload.group_key)
                others = [i for i in (group.member_booking_ids() if group else []) if i != booking.id]
                for sibling in await uow.bookings.get_many(others):
                    if S(sibling.status) != S.PENDING:
                        continue
                    sibling.provider_id = provider_id
                    sibling.transition_to(S.DRIVER_ASSIGNED)
                    await uow.bookings.save(sibling)
                    await self._track(uow, sibling, "Provider accepted the shared ride")
                    siblings.append(sibling)
            await uow.commit()

        logger.info("Booking %s accepted by provider %s", booking.booking_number, provider_id)
        for b in [booking, *siblings]:
            self._notify(b.customer_id, "booking.accepted", b, provider_id=provider_id)
        return booking

    async def assign(self, booking_id: str, provider_id: str) -> Booking:
        """CONFIRMED (no provider yet) -> DRIVER_ASSIGNED, e.g. a courier claiming an order."""
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            _require_status(booking, frozenset({S.CONFIRMED}), S.DRIVER_ASSIGNED)
            if booking.provider_id is not None:
                raise InvalidState(
                    S.DRIVER_ASSIGNED.value,
                    booking.status,
                    f"Booking {booking.id} already has provider {booking.provider_id}",
                )
            await self._take_provider(uow, booking, provider_id)
            booking.provider_id = provider_id
            booking.transition_to(S.DRIVER_ASSIGNED)
            await uow.bookings.save(booking)
            await self._track(uow, booking, "Provider assigned")
            await uow.commit()

        logger.info("Booking %s assigned to provider %s", booking.booking_number, provider_id)
        self._notify(booking.customer_id, "booking.assigned", booking, provider_id=provider_id)
        return booking

    async def arrive(self, booking_id: str, provider_id: str) -> Booking:
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            _require_status(booking, frozenset({S.DRIVER_ASSIGNED, S.CONFIRMED}), S.DRIVER_ARRIVED)
            if booking.provider_id is None:
                raise InvalidState(
                    S.DRIVER_ARRIVED.value, booking.status, f"Booking {booking.id} has no provider assigned"
                )
            _require_provider(booking, provider_id)
            if S(booking.status) == S.CONFIRMED:
                # pre-assigned (moving, day booking): the lease starts on arrival
                if not await uow.providers.acquire(provider_id, booking.id):
                    raise ProviderUnavailable(f"Provider {provider_id} is busy with another booking")
            booking.transition_to(S.DRIVER_ARRIVED)
            await uow.bookings.save(booking)
            await self._track(uow, booking, "Provider arrived at pickup")
            await uow.commit()

        self._notify(booking.customer_id, "booking.provider_arrived", booking)
        return booking

    async def start(self, booking_id: str, provider_id: str) -> Booking:
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            _require_status(booking, frozenset({S.DRIVER_ARRIVED}), S.IN_PROGRESS)
            _require_provider(booking, provider_id)
            booking.transition_to(S.IN_PROGRESS)
            await uow.bookings.save(booking)
            await self._track(uow, booking, "Trip started")
            await uow.commit()

        self._notify(booking.customer_id, "booking.started", booking)
        return booking

    async def complete(
        self,
        booking_id: str,
        provider_id: str,
        actual_distance_m: float,
        actual_duration_min: int,
        final_price: Decimal,
    ) -> Booking:
        """IN_PROGRESS -> COMPLETED; settles commission, credits the provider, frees the lease."""
        if final_price is None or Decimal(final_price) < 0:
            raise ValidationError("final_price must be a non-negative amount")
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            _require_status(booking, frozenset({S.IN_PROGRESS}), S.COMPLETED)
            _require_provider(booking, provider_id)

            commission, earning = settle(Decimal(final_price), booking.service_type, _is_inter_regional(booking))
            booking.actual_distance_m = actual_distance_m
            booking.actual_duration_min = actual_duration_min
            booking.final_price = Decimal(final_price)
            booking.platform_commission = commission
            booking.provider_earning = earning
            booking.transition_to(S.COMPLETED)
            await uow.bookings.save(booking)

            await uow.providers.record_completion(provider_id, earning, commission)
            await self._release_provider(uow, booking)
            await self._track(uow, booking, "Trip completed")
            await uow.commit()

        logger.info(
            "Booking %s completed: final=%s commission=%s earning=%s",
            booking.booking_number, booking.final_price, commission, earning,
        )
        self._notify(booking.customer_id, "booking.completed", booking, final_price=str(booking.final_price))
        return booking

    # ------------------------------------------------------------------
    # Cancellation / rejection
    # ------------------------------------------------------------------

    async def cancel(self, booking_id: str, actor_id: str, reason: str = "No reason provided") -> Booking:
        """
        Cancel from PENDING, CONFIRMED or DRIVER_ASSIGNED.

        Fee: 10 % of the estimate when the customer backs out after a
        provider was assigned; free otherwise.
        """
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            if not booking.is_party(actor_id):
                raise AccessDenied(f"User {actor_id} cannot cancel booking {booking.id}")
            _require_status(booking, CANCELLABLE, S.CANCELLED)

            by_customer = actor_id == booking.customer_id
            booking.cancellation_fee = cancellation_fee(booking.status, booking.estimated_price, by_customer)
            booking.cancelled_by = actor_id
            booking.cancellation_reason = reason

            if _is_shared(booking):
                await self.groups.leave(uow, booking)
            await self._release_provider(uow, booking)
            booking.transition_to(S.CANCELLED)
            await uow.bookings.save(booking)
            await self._track(uow, booking, f"Cancelled: {reason}")
            await uow.commit()

        logger.info(
            "Booking %s cancelled by %s (fee=%s)", booking.booking_number, actor_id, booking.cancellation_fee
        )
        other = booking.provider_id if by_customer else booking.customer_id
        self._notify(other, "booking.cancelled", booking, reason=reason)
        return booking

    async def _close_out(self, booking_id: str, target: S, reason: str) -> Booking:
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            if booking.is_terminal:
                raise InvalidState(target.value, booking.status)
            booking.status_reason = reason
            if _is_shared(booking):
                await self.groups.leave(uow, booking)
            await self._release_provider(uow, booking)
            booking.transition_to(target)
            await uow.bookings.save(booking)
            await self._track(uow, booking, reason)
            await uow.commit()

        logger.warning("Booking %s %s: %s", booking.booking_number, target.value.lower(), reason)
        self._notify(booking.customer_id, f"booking.{target.value.lower()}", booking, reason=reason)
        return booking

    async def reject(self, booking_id: str, reason: str) -> Booking:
        return await self._close_out(booking_id, S.REJECTED, reason)

    async def fail(self, booking_id: str, reason: str) -> Booking:
        return await self._close_out(booking_id, S.FAILED, reason)

    # ------------------------------------------------------------------
    # Reads and tracking
    # ------------------------------------------------------------------

    async def get_status(self, booking_id: str, caller_id: str) -> Booking:
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
        if not booking.is_party(caller_id):
            raise AccessDenied(f"User {caller_id} cannot view booking {booking_id}")
        return booking

    async def get_tracking(self, booking_id: str, caller_id: str) -> tuple[Booking, list[TrackingEvent]]:
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            if not booking.is_party(caller_id):
                raise AccessDenied(f"User {caller_id} cannot track booking {booking_id}")
            events = await uow.tracking.list_for_booking(booking_id)
        return booking, events

    async def record_tracking(
        self,
        booking_id: str,
        provider_id: str,
        lat: float,
        lng: float,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
        message: Optional[str] = None,
    ) -> TrackingEvent:
        async with self.uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            _require_provider(booking, provider_id)
            if S(booking.status) not in ACTIVE:
                raise InvalidState(
                    booking.status, booking.status, f"Booking {booking.id} is not active ({booking.status})"
                )
            now = utcnow()
            await uow.providers.update_location(provider_id, lat, lng, now)
            event = await self._track(uow, booking, message, lat=lat, lng=lng, heading=heading, speed=speed)
            await uow.commit()

        self._notify(booking.customer_id, "booking.location", booking, lat=lat, lng=lng)
        return event
