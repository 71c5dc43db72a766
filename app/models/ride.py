import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Boolean, Integer, JSON, String, Float, Numeric, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class RideRequest(Base):
    __tablename__ = "ride_requests"
    __table_args__ = (
        # Activation poller scan: due prepaid scheduled rides, earliest first
        Index("idx_ride_requests_due", "is_schedule", "status", "schedule_datetime"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    driver_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id"), nullable=True, index=True)
    service_id: Mapped[str | None] = mapped_column(String, ForeignKey("services.id"), nullable=True)

    is_schedule: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_prepaid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    schedule_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set to the activation time once a driver is assigned
    activated_at: Mapped[datetime | None] = mapped_column("datetime", DateTime(timezone=True), nullable=True)

    # scheduled | active | completed | cancelled | expired
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", index=True)

    start_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_address: Mapped[str] = mapped_column(String(500), nullable=False)
    end_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    end_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    end_address: Mapped[str] = mapped_column(String(500), nullable=False)

    distance_km: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False, default=Decimal("0"))
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Fare breakdown
    base_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    minimum_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    per_distance_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    per_minute_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    coupon_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    coupon_discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    extra_charges: Mapped[list | None] = mapped_column(JSON, nullable=True)
    extra_charges_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # cash | card | wallet
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    cancel_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
