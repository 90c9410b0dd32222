"""Initial schema: bookings, shared ride groups, provider availability, zones, tracking"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "service_zones",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("zone_type", sa.String(20), nullable=False, server_default="REGIONAL"),
        sa.Column("center_lat", sa.Float, nullable=False),
        sa.Column("center_lng", sa.Float, nullable=False),
        sa.Column("radius_m", sa.Float, nullable=True),
        sa.Column("boundary", sa.JSON, nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("allows_inter_regional", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("inter_regional_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("connected_zone_ids", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index("idx_zones_active", "service_zones", ["is_active"])

    op.create_table(
        "provider_availability",
        sa.Column("provider_id", sa.String, primary_key=True),
        sa.Column("category", sa.String(20), nullable=False, server_default="ECONOMY"),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("current_booking_id", sa.String, nullable=True),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("zone_id", sa.String, sa.ForeignKey("service_zones.id"), nullable=True),
        sa.Column("accepts_inter_regional", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("total_jobs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("monthly_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("monthly_commission_due", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_providers_available", "provider_availability", ["is_online", "is_available", "category"])
    op.create_index("idx_providers_zone", "provider_availability", ["zone_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("booking_number", sa.String(32), nullable=False),
        sa.Column("customer_id", sa.String, nullable=False),
        sa.Column("provider_id", sa.String, nullable=True),
        sa.Column("service_type", sa.String(30), nullable=False),
        sa.Column("request_mode", sa.String(20), nullable=False, server_default="IMMEDIATE"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="PENDING"),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("estimated_distance_m", sa.Float, nullable=True),
        sa.Column("estimated_duration_min", sa.Integer, nullable=True),
        sa.Column("actual_distance_m", sa.Float, nullable=True),
        sa.Column("actual_duration_min", sa.Integer, nullable=True),
        sa.Column("estimated_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("final_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(5), nullable=False, server_default="GHS"),
        sa.Column("platform_commission", sa.Numeric(10, 2), nullable=True),
        sa.Column("provider_earning", sa.Numeric(10, 2), nullable=True),
        sa.Column("cancellation_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("service_data", sa.JSON, nullable=False),
        sa.Column("cancelled_by", sa.String, nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("status_reason", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("idx_bookings_number", "bookings", ["booking_number"])
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])
    op.create_index("idx_bookings_provider", "bookings", ["provider_id"])
    op.create_index("idx_bookings_service_type", "bookings", ["service_type"])
    op.create_index("idx_bookings_created", "bookings", ["created_at"])

    op.create_table(
        "shared_ride_groups",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("group_key", sa.String(64), unique=True, nullable=False),
        sa.Column("leader_booking_id", sa.String, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="OPEN"),
        sa.Column("accepting_passengers", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("max_passengers", sa.Integer, nullable=False, server_default="4"),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("members", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_groups_open", "shared_ride_groups", ["status", "created_at"])

    op.create_table(
        "tracking_events",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("booking_id", sa.String, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("heading", sa.Float, nullable=True),
        sa.Column("speed", sa.Float, nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_tracking_booking", "tracking_events", ["booking_id", "recorded_at"])


def downgrade() -> None:
    op.drop_table("tracking_events")
    op.drop_table("shared_ride_groups")
    op.drop_table("bookings")
    op.drop_table("provider_availability")
    op.drop_table("service_zones")
