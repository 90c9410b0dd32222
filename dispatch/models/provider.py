from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Float, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.database import Base


class ProviderAvailability(Base):
    """Per-provider availability, location and earnings counters.

    ``current_booking_id`` is the lease: it is set together with
    ``is_available = False`` when a booking takes the provider and cleared when
    that booking reaches a terminal state.
    """

    __tablename__ = "provider_availability"

    provider_id: Mapped[str] = mapped_column(String, primary_key=True)
    # ride category for drivers (ECONOMY, TAXI, ...) or COURIER / MOVER / RESPONDER
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="ECONOMY", index=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_booking_id: Mapped[str | None] = mapped_column(String, nullable=True)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    zone_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    accepts_inter_regional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    monthly_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    monthly_commission_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
