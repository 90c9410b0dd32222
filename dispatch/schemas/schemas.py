from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ServiceTypeEnum(str, Enum):
    RIDE = "RIDE"
    TAXI = "TAXI"
    SHARED_RIDE = "SHARED_RIDE"
    STORE_DELIVERY = "STORE_DELIVERY"
    FOOD_DELIVERY = "FOOD_DELIVERY"
    PACKAGE_DELIVERY = "PACKAGE_DELIVERY"
    HOUSE_MOVING = "HOUSE_MOVING"
    DAY_BOOKING = "DAY_BOOKING"
    EMERGENCY = "EMERGENCY"


class BookingStatusEnum(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    DRIVER_ARRIVED = "DRIVER_ARRIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


class RequestModeEnum(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    SCHEDULED = "SCHEDULED"


class RideCategoryEnum(str, Enum):
    ECONOMY = "ECONOMY"
    COMFORT = "COMFORT"
    PREMIUM = "PREMIUM"
    SUV = "SUV"
    SHARED = "SHARED"
    TAXI = "TAXI"


class DeliveryTypeEnum(str, Enum):
    PACKAGE = "PACKAGE"
    FOOD = "FOOD"
    GROCERY = "GROCERY"
    PHARMACY = "PHARMACY"
    DOCUMENTS = "DOCUMENTS"


class GroupStatusEnum(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


DELIVERY_SERVICES = frozenset({
    ServiceTypeEnum.STORE_DELIVERY,
    ServiceTypeEnum.FOOD_DELIVERY,
    ServiceTypeEnum.PACKAGE_DELIVERY,
})


# ---------------------------------------------------------------------------
# Service data variants (one shape per service family)
# ---------------------------------------------------------------------------

class InterRegionalInfo(BaseModel):
    origin_zone_id: str
    origin_zone_name: str
    destination_zone_id: str
    destination_zone_name: str
    fee: Decimal
    requires_approval: bool = False
    approved: bool = False


class RideServiceData(BaseModel):
    kind: Literal["ride"] = "ride"
    ride_category: RideCategoryEnum = RideCategoryEnum.ECONOMY
    surge_multiplier: float = 1.0
    pricing_type: Optional[str] = None
    notes: Optional[str] = None
    inter_regional: Optional[InterRegionalInfo] = None


class SharedRideServiceData(BaseModel):
    kind: Literal["shared_ride"] = "shared_ride"
    group_key: str
    is_group_leader: bool
    max_passengers: int = 4
    passenger_count: int = 1
    waiting_for_more_passengers: bool = True
    solo_price: Decimal
    estimated_savings: Decimal = Decimal("0")


class OrderLine(BaseModel):
    item_id: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    instructions: Optional[str] = None


class OrderServiceData(BaseModel):
    kind: Literal["order"] = "order"
    store_id: str
    store_name: str
    owner_id: str
    lines: list[OrderLine]
    order_total: Decimal
    delivery_fee: Decimal
    preparation_minutes: int = 20
    instructions: Optional[str] = None


class PackageServiceData(BaseModel):
    kind: Literal["package"] = "package"
    tracking_number: str
    description: str
    weight_kg: Optional[float] = None
    recipient_name: str
    recipient_phone: str
    requires_signature: bool = False
    is_fragile: bool = False
    instructions: Optional[str] = None


class MovingServiceData(BaseModel):
    kind: Literal["moving"] = "moving"
    service_tier: str
    inventory_count: int
    crew_size: int = 4
    truck_size: str = "LARGE"
    duration_hours: int = 8
    breakdown: dict[str, float] = Field(default_factory=dict)
    special_requirements: Optional[str] = None


class DayBookingServiceData(BaseModel):
    kind: Literal["day_booking"] = "day_booking"
    duration_hours: int
    service_area: str
    breakdown: dict[str, float] = Field(default_factory=dict)
    special_requirements: Optional[str] = None
    contact_phone: Optional[str] = None


class EmergencyServiceData(BaseModel):
    kind: Literal["emergency"] = "emergency"
    emergency_type: str
    description: Optional[str] = None
    priority: str = "CRITICAL"


ServiceData = Annotated[
    Union[
        RideServiceData,
        SharedRideServiceData,
        OrderServiceData,
        PackageServiceData,
        MovingServiceData,
        DayBookingServiceData,
        EmergencyServiceData,
    ],
    Field(discriminator="kind"),
]

service_data_adapter: TypeAdapter = TypeAdapter(ServiceData)

SERVICE_DATA_KIND: dict[ServiceTypeEnum, str] = {
    ServiceTypeEnum.RIDE: "ride",
    ServiceTypeEnum.TAXI: "ride",
    ServiceTypeEnum.SHARED_RIDE: "shared_ride",
    ServiceTypeEnum.STORE_DELIVERY: "order",
    ServiceTypeEnum.FOOD_DELIVERY: "order",
    ServiceTypeEnum.PACKAGE_DELIVERY: "package",
    ServiceTypeEnum.HOUSE_MOVING: "moving",
    ServiceTypeEnum.DAY_BOOKING: "day_booking",
    ServiceTypeEnum.EMERGENCY: "emergency",
}


# ---------------------------------------------------------------------------
# Booking creation requests
# ---------------------------------------------------------------------------

def _as_future(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value <= datetime.now(timezone.utc):
        raise ValueError("must be in the future")
    return value


class _RouteRequest(BaseModel):
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)


class RideBookingRequest(_RouteRequest):
    service_type: Literal["RIDE", "TAXI"]
    ride_category: RideCategoryEnum = RideCategoryEnum.ECONOMY
    pricing_type: Literal["METERED", "FIXED"] = "METERED"
    scheduled_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("scheduled_at")
    @classmethod
    def scheduled_at_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_future(value)


class SharedRideRequest(_RouteRequest):
    service_type: Literal["SHARED_RIDE"]


class OrderLineRequest(BaseModel):
    item_id: str
    quantity: int = Field(..., gt=0, le=100)
    instructions: Optional[str] = None


class OrderDeliveryRequest(BaseModel):
    service_type: Literal["STORE_DELIVERY", "FOOD_DELIVERY"]
    store_id: str
    delivery_lat: float = Field(..., ge=-90, le=90)
    delivery_lng: float = Field(..., ge=-180, le=180)
    items: list[OrderLineRequest] = Field(..., min_length=1)
    instructions: Optional[str] = None


class PackageDeliveryRequest(_RouteRequest):
    service_type: Literal["PACKAGE_DELIVERY"]
    description: str = Field(..., min_length=1, max_length=255)
    weight_kg: Optional[float] = Field(default=None, gt=0)
    recipient_name: str = Field(..., min_length=1)
    recipient_phone: str = Field(..., min_length=7, max_length=20)
    requires_signature: bool = False
    is_fragile: bool = False
    scheduled_pickup: Optional[datetime] = None
    instructions: Optional[str] = None

    @field_validator("scheduled_pickup")
    @classmethod
    def scheduled_pickup_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_future(value)


class MovingRequest(_RouteRequest):
    service_type: Literal["HOUSE_MOVING"]
    provider_id: str
    moving_date: datetime
    inventory_items: list[str] = Field(default_factory=list)
    service_tier: str = "STANDARD"
    special_requirements: Optional[str] = None

    @field_validator("moving_date")
    @classmethod
    def moving_date_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_future(value)


class DayBookingRequest(BaseModel):
    service_type: Literal["DAY_BOOKING"]
    provider_id: str
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    scheduled_at: datetime
    duration_hours: int = Field(..., ge=1, le=24)
    service_area: str = "CITY"
    special_requirements: Optional[str] = None
    contact_phone: Optional[str] = None

    @field_validator("scheduled_at")
    @classmethod
    def scheduled_at_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_future(value)


class EmergencyRequest(BaseModel):
    service_type: Literal["EMERGENCY"]
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    emergency_type: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = None


BookingCreateUnion = Union[
    RideBookingRequest,
    SharedRideRequest,
    OrderDeliveryRequest,
    PackageDeliveryRequest,
    MovingRequest,
    DayBookingRequest,
    EmergencyRequest,
]

BookingCreateRequest = Annotated[BookingCreateUnion, Field(discriminator="service_type")]

booking_request_adapter: TypeAdapter = TypeAdapter(BookingCreateRequest)


# ---------------------------------------------------------------------------
# Lifecycle requests
# ---------------------------------------------------------------------------

class CompleteBookingRequest(BaseModel):
    actual_distance_m: float = Field(..., ge=0)
    actual_duration_min: int = Field(..., ge=0)
    final_price: Decimal = Field(..., ge=0)


class CancelBookingRequest(BaseModel):
    reason: str = Field(default="No reason provided", max_length=255)


class RejectBookingRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class TrackingUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(default=None, ge=0, lt=360)
    speed: Optional[float] = Field(default=None, ge=0)
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class BookingResponse(BaseModel):
    id: str
    booking_number: str
    customer_id: str
    provider_id: Optional[str] = None
    service_type: ServiceTypeEnum
    request_mode: RequestModeEnum
    status: BookingStatusEnum
    scheduled_at: Optional[datetime] = None
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    estimated_price: Decimal
    final_price: Optional[Decimal] = None
    currency: str
    platform_commission: Optional[Decimal] = None
    provider_earning: Optional[Decimal] = None
    cancellation_fee: Optional[Decimal] = None
    service_data: dict
    created_at: datetime
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TrackingEventResponse(BaseModel):
    status: str
    message: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    recorded_at: datetime

    model_config = {"from_attributes": True}


class TrackingResponse(BaseModel):
    booking_id: str
    status: BookingStatusEnum
    provider_id: Optional[str] = None
    events: list[TrackingEventResponse]


class CompatibleGroupResponse(BaseModel):
    group_key: str
    similarity: float
    passenger_count: int
    max_passengers: int
    current_share: Decimal


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None


class NearbyProviderResponse(BaseModel):
    provider_id: str
    category: str
    distance_m: float
    eta_minutes: int
