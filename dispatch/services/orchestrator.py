"""
Booking entry point.

Flow:
  1. Request arrives already validated (pydantic union keyed by service_type)
  2. Route by service type:
       SHARED_RIDE          -> shared-ride group manager
       RIDE / TAXI          -> zone check, fare estimate, PENDING, match
       STORE / FOOD         -> catalog quote + delivery fee, CONFIRMED
       PACKAGE_DELIVERY     -> delivery fee, CONFIRMED
       HOUSE_MOVING / DAY   -> hourly pricing, CONFIRMED to the chosen provider
       EMERGENCY            -> free, PENDING, wide-radius responder match
  3. Persist, then notify / offer to providers (best-effort)

Nothing after the booking is committed can roll it back: matching and
notification failures are logged and swallowed.
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional

from dispatch.config import Settings, get_settings
from dispatch.exceptions import InvalidState, NotFound, ValidationError
from dispatch.models import Booking, TrackingEvent
from dispatch.models.booking import utcnow
from dispatch.repositories.base import UnitOfWorkFactory
from dispatch.schemas.schemas import (
    BookingStatusEnum,
    DayBookingRequest,
    DayBookingServiceData,
    EmergencyRequest,
    EmergencyServiceData,
    InterRegionalInfo,
    MovingRequest,
    MovingServiceData,
    OrderDeliveryRequest,
    OrderServiceData,
    PackageDeliveryRequest,
    PackageServiceData,
    RequestModeEnum,
    RideBookingRequest,
    RideCategoryEnum,
    RideServiceData,
    ServiceTypeEnum,
    SharedRideRequest,
)
from dispatch.services import identifiers
from dispatch.services.catalog import CatalogClient
from dispatch.services.geo import Coordinates, Route, distance_meters, estimate_travel_minutes
from dispatch.services.groups import SharedRideGroupManager
from dispatch.services.matching import ProviderMatcher
from dispatch.services.notifications import NotificationDispatcher
from dispatch.services.pricing import (
    MOVING_HOURS,
    FareEstimator,
    calculate_duration_price,
    delivery_type_for,
)
from dispatch.services.zones import ZoneService

logger = logging.getLogger(__name__)

FOOD_PREPARATION_MINUTES = 25
STORE_PREPARATION_MINUTES = 20

# service tier -> (crew size, truck size)
MOVING_CREW = {
    "BASIC": (2, "SMALL"),
    "STANDARD": (3, "MEDIUM"),
    "PREMIUM": (4, "LARGE"),
}


class DispatchOrchestrator:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        estimator: FareEstimator,
        zones: ZoneService,
        groups: SharedRideGroupManager,
        matcher: ProviderMatcher,
        notifier: NotificationDispatcher,
        catalog: CatalogClient,
        settings: Optional[Settings] = None,
    ):
        self.uow_factory = uow_factory
        self.estimator = estimator
        self.zones = zones
        self.groups = groups
        self.matcher = matcher
        self.notifier = notifier
        self.catalog = catalog
        self.settings = settings or get_settings()

    async def create_booking(self, customer_id: str, request) -> Booking:
        handlers = {
            ServiceTypeEnum.RIDE: self._create_ride,
            ServiceTypeEnum.TAXI: self._create_ride,
            ServiceTypeEnum.SHARED_RIDE: self._create_shared_ride,
            ServiceTypeEnum.STORE_DELIVERY: self._create_order,
            ServiceTypeEnum.FOOD_DELIVERY: self._create_order,
            ServiceTypeEnum.PACKAGE_DELIVERY: self._create_package,
            ServiceTypeEnum.HOUSE_MOVING: self._create_moving,
            ServiceTypeEnum.DAY_BOOKING: self._create_day_booking,
            ServiceTypeEnum.EMERGENCY: self._create_emergency,
        }
        booking = await handlers[ServiceTypeEnum(request.service_type)](customer_id, request)
        logger.info(
            "Booking %s created: type=%s status=%s price=%s",
            booking.booking_number, booking.service_type, booking.status, booking.estimated_price,
        )
        return booking

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _new_booking(self, customer_id: str, service_type: ServiceTypeEnum, number: str, **fields) -> Booking:
        fields.setdefault("request_mode", RequestModeEnum.IMMEDIATE.value)
        fields.setdefault("status", BookingStatusEnum.PENDING.value)
        return Booking(
            id=str(uuid.uuid4()),
            booking_number=number,
            customer_id=customer_id,
            service_type=service_type.value,
            currency=self.settings.currency,
            service_data={},
            created_at=utcnow(),
            **fields,
        )

    async def _persist(self, booking: Booking, message: str) -> None:
        async with self.uow_factory() as uow:
            await uow.bookings.add(booking)
            await uow.tracking.append(
                TrackingEvent(
                    id=str(uuid.uuid4()),
                    booking_id=booking.id,
                    status=booking.status,
                    message=message,
                    lat=booking.pickup_lat,
                    lng=booking.pickup_lng,
                    recorded_at=booking.created_at,
                )
            )
            await uow.commit()

    async def _match(self, booking: Booking, **options) -> None:
        try:
            await self.matcher.dispatch(booking, **options)
        except Exception as exc:
            logger.error("Matching failed for booking %s: %s", booking.booking_number, exc)

    # ------------------------------------------------------------------
    # Rides
    # ------------------------------------------------------------------

    async def _create_ride(self, customer_id: str, req: RideBookingRequest) -> Booking:
        pickup = Coordinates(req.pickup_lat, req.pickup_lng)
        dropoff = Coordinates(req.dropoff_lat, req.dropoff_lng)
        is_taxi = req.service_type == ServiceTypeEnum.TAXI
        category = RideCategoryEnum.TAXI if is_taxi else RideCategoryEnum(req.ride_category)

        async with self.uow_factory() as uow:
            check = await self.zones.check_inter_regional(uow, pickup, dropoff)
        if not check.permitted:
            raise ValidationError(
                f"Trips from {check.origin.name} to {check.destination.name} are not available"
            )

        quote = await self.estimator.estimate(pickup, dropoff, category.value)

        inter = None
        if check.is_inter_regional:
            inter = InterRegionalInfo(
                origin_zone_id=check.origin.id,
                origin_zone_name=check.origin.name,
                destination_zone_id=check.destination.id,
                destination_zone_name=check.destination.name,
                fee=check.fee,
                requires_approval=check.requires_approval,
            )
            number = identifiers.booking_number("IRB")
        elif is_taxi:
            number = identifiers.taxi_number()
        else:
            number = identifiers.booking_number("TRP")

        booking = self._new_booking(
            customer_id,
            ServiceTypeEnum(req.service_type),
            number,
            request_mode=(RequestModeEnum.SCHEDULED if req.scheduled_at else RequestModeEnum.IMMEDIATE).value,
            scheduled_at=req.scheduled_at,
            pickup_lat=pickup.lat,
            pickup_lng=pickup.lng,
            dropoff_lat=dropoff.lat,
            dropoff_lng=dropoff.lng,
            estimated_distance_m=quote.distance_m,
            estimated_duration_min=quote.duration_min,
            estimated_price=quote.price + check.fee,
        )
        booking.payload = RideServiceData(
            ride_category=category,
            surge_multiplier=quote.surge_multiplier,
            pricing_type=req.pricing_type if is_taxi else None,
            notes=req.notes,
            inter_regional=inter,
        )
        await self._persist(booking, "Booking requested")
        await self.estimator.record_demand(category.value)

        if inter is not None and inter.requires_approval:
            logger.info("Booking %s awaits inter-regional approval", booking.booking_number)
            self.notifier.notify_admins(
                "booking.inter_regional_approval",
                {
                    "booking_id": booking.id,
                    "booking_number": booking.booking_number,
                    "origin_zone": inter.origin_zone_name,
                    "destination_zone": inter.destination_zone_name,
                    "fee": str(inter.fee),
                },
            )
        elif booking.request_mode == RequestModeEnum.IMMEDIATE:
            await self._dispatch_ride(booking, inter)
        return booking

    async def _dispatch_ride(self, booking: Booking, inter: Optional[InterRegionalInfo]) -> None:
        if inter is None:
            await self._match(booking, top_n=self.settings.regular_notify_top_n)
        else:
            await self._match(
                booking,
                top_n=self.settings.inter_regional_notify_top_n,
                radius_m=self.settings.inter_regional_radius_m,
                zone_id=inter.origin_zone_id,
                inter_regional_only=True,
            )

    async def approve_inter_regional(self, booking_id: str) -> Booking:
        """Admin sign-off for a high-risk inter-regional trip; matching starts afterwards."""
        async with self.uow_factory() as uow:
            booking = await uow.bookings.get(booking_id)
            if booking is None:
                raise NotFound(f"Booking {booking_id} not found")
            if booking.status != BookingStatusEnum.PENDING:
                raise InvalidState("APPROVED", booking.status, f"Only PENDING bookings can be approved, not {booking.status}")
            data = booking.payload
            inter = getattr(data, "inter_regional", None)
            if inter is None or not inter.requires_approval:
                raise ValidationError(f"Booking {booking_id} does not require inter-regional approval")
            if inter.approved:
                raise ValidationError(f"Booking {booking_id} is already approved")
            inter.approved = True
            booking.payload = data
            await uow.bookings.save(booking)
            await uow.tracking.append(
                TrackingEvent(
                    id=str(uuid.uuid4()),
                    booking_id=booking.id,
                    status=booking.status,
                    message="Inter-regional trip approved",
                    recorded_at=utcnow(),
                )
            )
            await uow.commit()

        logger.info("Inter-regional booking %s approved", booking.booking_number)
        self.notifier.notify(
            booking.customer_id,
            "booking.approved",
            {"booking_id": booking.id, "booking_number": booking.booking_number},
        )
        if booking.request_mode == RequestModeEnum.IMMEDIATE:
            await self._dispatch_ride(booking, inter)
        return booking

    async def _create_shared_ride(self, customer_id: str, req: SharedRideRequest) -> Booking:
        route = Route.from_points(req.pickup_lat, req.pickup_lng, req.dropoff_lat, req.dropoff_lng)
        result = await self.groups.join_or_create(customer_id, route)
        await self.estimator.record_demand(RideCategoryEnum.SHARED.value)

        if result.joined:
            share = str(result.booking.estimated_price)
            for member in result.group.members:
                if member["booking_id"] == result.booking.id:
                    continue
                self.notifier.notify(
                    member["customer_id"],
                    "shared_ride.passenger_joined",
                    {
                        "booking_id": member["booking_id"],
                        "group_key": result.group.group_key,
                        "passenger_count": result.group.passenger_count,
                        "new_share": share,
                    },
                )
        else:
            await self._match(result.booking, top_n=self.settings.regular_notify_top_n)
        return result.booking

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def _create_order(self, customer_id: str, req: OrderDeliveryRequest) -> Booking:
        quote = await self.catalog.quote(req.store_id, req.items)
        store = Coordinates(quote.store_lat, quote.store_lng)
        destination = Coordinates(req.delivery_lat, req.delivery_lng)
        fee = await self.estimator.estimate_delivery(store, destination, delivery_type_for(req.service_type))
        distance = distance_meters(store.lat, store.lng, destination.lat, destination.lng)
        is_food = req.service_type == ServiceTypeEnum.FOOD_DELIVERY

        booking = self._new_booking(
            customer_id,
            ServiceTypeEnum(req.service_type),
            identifiers.order_number(),
            status=BookingStatusEnum.CONFIRMED.value,
            pickup_lat=store.lat,
            pickup_lng=store.lng,
            dropoff_lat=destination.lat,
            dropoff_lng=destination.lng,
            estimated_distance_m=distance,
            estimated_duration_min=estimate_travel_minutes(distance),
            estimated_price=quote.order_total + fee,
        )
        booking.payload = OrderServiceData(
            store_id=quote.store_id,
            store_name=quote.store_name,
            owner_id=quote.owner_id,
            lines=quote.lines,
            order_total=quote.order_total,
            delivery_fee=fee,
            preparation_minutes=FOOD_PREPARATION_MINUTES if is_food else STORE_PREPARATION_MINUTES,
            instructions=req.instructions,
        )
        await self._persist(booking, "Order placed")

        self.notifier.notify(
            quote.owner_id,
            "order.new",
            {
                "booking_id": booking.id,
                "booking_number": booking.booking_number,
                "items": len(quote.lines),
                "order_total": str(quote.order_total),
            },
        )
        await self._match(booking, top_n=self.settings.regular_notify_top_n)
        return booking

    async def _create_package(self, customer_id: str, req: PackageDeliveryRequest) -> Booking:
        pickup = Coordinates(req.pickup_lat, req.pickup_lng)
        dropoff = Coordinates(req.dropoff_lat, req.dropoff_lng)
        fee = await self.estimator.estimate_delivery(pickup, dropoff, delivery_type_for(req.service_type))
        distance = distance_meters(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
        scheduled = req.scheduled_pickup is not None

        booking = self._new_booking(
            customer_id,
            ServiceTypeEnum.PACKAGE_DELIVERY,
            identifiers.booking_number("TRP"),
            status=BookingStatusEnum.CONFIRMED.value,
            request_mode=(RequestModeEnum.SCHEDULED if scheduled else RequestModeEnum.IMMEDIATE).value,
            scheduled_at=req.scheduled_pickup,
            pickup_lat=pickup.lat,
            pickup_lng=pickup.lng,
            dropoff_lat=dropoff.lat,
            dropoff_lng=dropoff.lng,
            estimated_distance_m=distance,
            estimated_duration_min=estimate_travel_minutes(distance),
            estimated_price=fee,
        )
        booking.payload = PackageServiceData(
            tracking_number=identifiers.tracking_number(),
            description=req.description,
            weight_kg=req.weight_kg,
            recipient_name=req.recipient_name,
            recipient_phone=req.recipient_phone,
            requires_signature=req.requires_signature,
            is_fragile=req.is_fragile,
            instructions=req.instructions,
        )
        await self._persist(booking, "Package delivery booked")
        if not scheduled:
            await self._match(booking, top_n=self.settings.regular_notify_top_n)
        return booking

    # ------------------------------------------------------------------
    # Provider-chosen bookings (hourly)
    # ------------------------------------------------------------------

    async def _chosen_provider_rate(self, provider_id: str) -> Optional[Decimal]:
        async with self.uow_factory() as uow:
            provider = await uow.providers.get(provider_id)
        if provider is None:
            raise NotFound(f"Provider {provider_id} not found")
        if not provider.is_verified:
            raise ValidationError(f"Provider {provider_id} is not verified")
        return provider.hourly_rate

    async def _create_moving(self, customer_id: str, req: MovingRequest) -> Booking:
        rate = await self._chosen_provider_rate(req.provider_id)
        quote = calculate_duration_price(MOVING_HOURS, req.moving_date, rate)
        crew, truck = MOVING_CREW.get(req.service_tier.upper(), MOVING_CREW["STANDARD"])
        distance = distance_meters(req.pickup_lat, req.pickup_lng, req.dropoff_lat, req.dropoff_lng)

        booking = self._new_booking(
            customer_id,
            ServiceTypeEnum.HOUSE_MOVING,
            identifiers.booking_number("MOV"),
            status=BookingStatusEnum.CONFIRMED.value,
            request_mode=RequestModeEnum.SCHEDULED.value,
            scheduled_at=req.moving_date,
            provider_id=req.provider_id,
            pickup_lat=req.pickup_lat,
            pickup_lng=req.pickup_lng,
            dropoff_lat=req.dropoff_lat,
            dropoff_lng=req.dropoff_lng,
            estimated_distance_m=distance,
            estimated_duration_min=MOVING_HOURS * 60,
            estimated_price=quote.price,
        )
        booking.payload = MovingServiceData(
            service_tier=req.service_tier.upper(),
            inventory_count=len(req.inventory_items),
            crew_size=crew,
            truck_size=truck,
            duration_hours=MOVING_HOURS,
            breakdown=quote.breakdown,
            special_requirements=req.special_requirements,
        )
        await self._persist(booking, "House move booked")
        self._notify_chosen_provider(booking)
        return booking

    async def _create_day_booking(self, customer_id: str, req: DayBookingRequest) -> Booking:
        rate = await self._chosen_provider_rate(req.provider_id)
        quote = calculate_duration_price(req.duration_hours, req.scheduled_at, rate)

        booking = self._new_booking(
            customer_id,
            ServiceTypeEnum.DAY_BOOKING,
            identifiers.booking_number("DAY"),
            status=BookingStatusEnum.CONFIRMED.value,
            request_mode=RequestModeEnum.SCHEDULED.value,
            scheduled_at=req.scheduled_at,
            provider_id=req.provider_id,
            pickup_lat=req.pickup_lat,
            pickup_lng=req.pickup_lng,
            estimated_duration_min=req.duration_hours * 60,
            estimated_price=quote.price,
        )
        booking.payload = DayBookingServiceData(
            duration_hours=req.duration_hours,
            service_area=req.service_area,
            breakdown=quote.breakdown,
            special_requirements=req.special_requirements,
            contact_phone=req.contact_phone,
        )
        await self._persist(booking, "Day booking confirmed")
        self._notify_chosen_provider(booking)
        return booking

    def _notify_chosen_provider(self, booking: Booking) -> None:
        self.notifier.notify(
            booking.provider_id,
            "booking.assigned",
            {
                "booking_id": booking.id,
                "booking_number": booking.booking_number,
                "service_type": booking.service_type,
                "scheduled_at": booking.scheduled_at.isoformat() if booking.scheduled_at else None,
                "estimated_price": str(booking.estimated_price),
            },
        )

    # ------------------------------------------------------------------
    # Emergency
    # ------------------------------------------------------------------

    async def _create_emergency(self, customer_id: str, req: EmergencyRequest) -> Booking:
        booking = self._new_booking(
            customer_id,
            ServiceTypeEnum.EMERGENCY,
            identifiers.booking_number("EMG"),
            pickup_lat=req.lat,
            pickup_lng=req.lng,
            estimated_price=Decimal("0"),
        )
        booking.payload = EmergencyServiceData(emergency_type=req.emergency_type, description=req.description)
        await self._persist(booking, f"Emergency reported: {req.emergency_type}")

        self.notifier.notify_admins(
            "emergency.created",
            {
                "booking_id": booking.id,
                "booking_number": booking.booking_number,
                "emergency_type": req.emergency_type,
                "location": {"lat": req.lat, "lng": req.lng},
            },
        )
        await self._match(
            booking,
            top_n=self.settings.emergency_notify_top_n,
            radius_m=self.settings.emergency_radius_m,
        )
        return booking
