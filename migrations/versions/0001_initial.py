"""Initial schema: users, services, coupons, ride requests, payments, wallets"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("contact_number", sa.String(20), unique=True, nullable=True),
        sa.Column("user_type", sa.String(20), nullable=False, server_default="rider"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_verified_driver", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_users_user_type", "users", ["user_type"])
    op.create_index(
        "idx_users_driver_pool",
        "users",
        ["user_type", "status", "is_online", "is_available", "is_verified_driver"],
    )

    op.create_table(
        "services",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("base_fare", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("minimum_fare", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("per_distance", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("per_minute_drive", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "driver_services",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("driver_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("service_id", sa.String, sa.ForeignKey("services.id"), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("driver_id", "service_id", name="uq_driver_service"),
    )
    op.create_index("idx_driver_services_driver", "driver_services", ["driver_id"])
    op.create_index("idx_driver_services_service", "driver_services", ["service_id"])

    op.create_table(
        "coupons",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("code", sa.String(50), unique=True, nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False, server_default="fixed"),
        sa.Column("discount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("maximum_discount", sa.Numeric(10, 2), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("rider_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.String, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("service_id", sa.String, sa.ForeignKey("services.id"), nullable=True),
        sa.Column("is_schedule", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_prepaid", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("schedule_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("datetime", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("start_latitude", sa.Float, nullable=True),
        sa.Column("start_longitude", sa.Float, nullable=True),
        sa.Column("start_address", sa.String(500), nullable=False),
        sa.Column("end_latitude", sa.Float, nullable=True),
        sa.Column("end_longitude", sa.Float, nullable=True),
        sa.Column("end_address", sa.String(500), nullable=False),
        sa.Column("distance_km", sa.Numeric(10, 3), nullable=False, server_default="0"),
        sa.Column("duration_seconds", sa.Integer, nullable=False, server_default="0"),
        sa.Column("base_fare", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("minimum_fare", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("per_distance_charge", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("per_minute_charge", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("coupon_code", sa.String(50), nullable=True),
        sa.Column("coupon_discount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("extra_charges", sa.JSON, nullable=True),
        sa.Column("extra_charges_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_type", sa.String(20), nullable=False, server_default="card"),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("cancel_by", sa.String(20), nullable=True),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_ride_requests_rider", "ride_requests", ["rider_id"])
    op.create_index("idx_ride_requests_driver", "ride_requests", ["driver_id"])
    op.create_index("idx_ride_requests_status", "ride_requests", ["status"])
    op.create_index("idx_ride_requests_created", "ride_requests", ["created_at"])
    op.create_index(
        "idx_ride_requests_due", "ride_requests", ["is_schedule", "status", "schedule_datetime"]
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_request_id", sa.String, sa.ForeignKey("ride_requests.id"), nullable=False),
        sa.Column("user_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(5), server_default="INR"),
        sa.Column("payment_type", sa.String(20), nullable=False, server_default="card"),
        sa.Column("payment_gateway", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("transaction_id", sa.String(255), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_status", sa.String(20), nullable=True),
        sa.Column("refund_reference", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_payments_ride_request", "payments", ["ride_request_id"])
    op.create_index("idx_payments_status", "payments", ["status"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, sa.ForeignKey("users.id"), unique=True, nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(5), server_default="INR"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    op.create_table(
        "wallet_histories",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("wallet_id", sa.String, sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("user_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("ride_request_id", sa.String, sa.ForeignKey("ride_requests.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_wallet_histories_wallet", "wallet_histories", ["wallet_id"])
    op.create_index("idx_wallet_histories_ride_request", "wallet_histories", ["ride_request_id"])


def downgrade() -> None:
    op.drop_table("wallet_histories")
    op.drop_table("wallets")
    op.drop_table("payments")
    op.drop_table("ride_requests")
    op.drop_table("coupons")
    op.drop_table("driver_services")
    op.drop_table("services")
    op.drop_table("users")
