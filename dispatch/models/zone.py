from decimal import Decimal

from sqlalchemy import JSON, Boolean, Float, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from dispatch.database import Base


class ServiceZone(Base):
    __tablename__ = "service_zones"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # LOCAL | REGIONAL | INTER_REGIONAL | NATIONAL | INTERNATIONAL
    zone_type: Mapped[str] = mapped_column(String(20), nullable=False, default="REGIONAL")
    center_lat: Mapped[float] = mapped_column(Float, nullable=False)
    center_lng: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    # [[lat, lng], ...]
    boundary: Mapped[list | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allows_inter_regional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    inter_regional_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    connected_zone_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
