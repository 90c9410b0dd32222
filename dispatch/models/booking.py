import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.database import Base
from dispatch.exceptions import InvalidState, ValidationError
from dispatch.schemas.schemas import (
    SERVICE_DATA_KIND,
    BookingStatusEnum as S,
    ServiceTypeEnum,
    service_data_adapter,
)

# Valid transitions for the booking state machine
BOOKING_TRANSITIONS: dict[str, set[str]] = {
    S.PENDING: {S.CONFIRMED, S.DRIVER_ASSIGNED, S.CANCELLED, S.REJECTED, S.FAILED},
    S.CONFIRMED: {S.DRIVER_ASSIGNED, S.DRIVER_ARRIVED, S.CANCELLED, S.REJECTED, S.FAILED},
    S.DRIVER_ASSIGNED: {S.DRIVER_ARRIVED, S.CANCELLED, S.REJECTED, S.FAILED},
    S.DRIVER_ARRIVED: {S.IN_PROGRESS, S.REJECTED, S.FAILED},
    S.IN_PROGRESS: {S.COMPLETED, S.REJECTED, S.FAILED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.REJECTED: set(),
    S.FAILED: set(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED, S.REJECTED, S.FAILED})
PROVIDER_REQUIRED = frozenset({S.DRIVER_ASSIGNED, S.DRIVER_ARRIVED, S.IN_PROGRESS, S.COMPLETED})

# status -> timestamp column stamped on entry
_STAMPS = {
    S.DRIVER_ASSIGNED: "accepted_at",
    S.DRIVER_ARRIVED: "arrived_at",
    S.IN_PROGRESS: "started_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
    S.REJECTED: "cancelled_at",
    S.FAILED: "cancelled_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    provider_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    service_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    # IMMEDIATE | SCHEDULED
    request_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="IMMEDIATE")
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # PENDING | CONFIRMED | DRIVER_ASSIGNED | DRIVER_ARRIVED | IN_PROGRESS |
    # COMPLETED | CANCELLED | REJECTED | FAILED
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="PENDING", index=True)

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    dropoff_lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    estimated_distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_duration_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_duration_min: Mapped[int | None] = mapped_column(Integer, nullable=True)

    estimated_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    final_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(5), nullable=False, default="GHS")
    platform_commission: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    provider_earning: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    cancellation_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    service_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Bumped on every UPDATE; a flush against a stale copy raises StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # ------------------------------------------------------------------
    # Service data (tagged by ``kind``, checked against service_type)
    # ------------------------------------------------------------------

    @property
    def payload(self) -> Any:
        return service_data_adapter.validate_python(self.service_data)

    @payload.setter
    def payload(self, value: Any) -> None:
        expected = SERVICE_DATA_KIND[ServiceTypeEnum(self.service_type)]
        if value.kind != expected:
            raise ValidationError(
                f"{self.service_type} bookings carry '{expected}' service data, got '{value.kind}'"
            )
        self.service_data = value.model_dump(mode="json")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return S(self.status) in TERMINAL_STATUSES

    def is_party(self, user_id: str) -> bool:
        return user_id == self.customer_id or (
            self.provider_id is not None and user_id == self.provider_id
        )

    def transition_to(self, new_status: str, at: Optional[datetime] = None) -> None:
        """Move to *new_status* if the transition is legal, else raise InvalidState."""
        new_status = S(new_status)
        if new_status not in BOOKING_TRANSITIONS[S(self.status)]:
            raise InvalidState(new_status.value, S(self.status).value)
        if new_status in PROVIDER_REQUIRED and self.provider_id is None:
            raise InvalidState(
                new_status.value,
                S(self.status).value,
                f"Booking {self.id} has no provider; cannot move to {new_status.value}",
            )
        stamp = _STAMPS.get(new_status)
        if stamp is not None and getattr(self, stamp) is None:
            setattr(self, stamp, at or utcnow())
        self.status = new_status.value
