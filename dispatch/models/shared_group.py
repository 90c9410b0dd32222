from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.database import Base
from dispatch.models.booking import utcnow


class SharedRideGroup(Base):
    """One row per shared-ride group: roster, total price and leader route.

    Writes go through ``version`` (optimistic locking); a flush against a
    stale version raises ``StaleDataError``.
    """

    __tablename__ = "shared_ride_groups"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    group_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    leader_booking_id: Mapped[str] = mapped_column(String, nullable=False)
    # OPEN | CLOSED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN", index=True)
    accepting_passengers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_passengers: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lng: Mapped[float] = mapped_column(Float, nullable=False)

    # [{"booking_id", "customer_id", "share", "joined_at"}, ...] in join order
    members: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def passenger_count(self) -> int:
        return len(self.members or [])

    @property
    def has_capacity(self) -> bool:
        return self.passenger_count < self.max_passengers

    def member_booking_ids(self) -> list[str]:
        return [m["booking_id"] for m in self.members or []]
