import uuid
from datetime import datetime
from sqlalchemy import Boolean, String, Float, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    contact_number: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    # rider | driver | admin
    user_type: Mapped[str] = mapped_column(String(20), nullable=False, default="rider", index=True)
    # active | inactive | banned
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    # Driver presence, read by the matcher
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified_driver: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DriverService(Base):
    """Which services (tariffs) a driver is allowed to serve."""

    __tablename__ = "driver_services"
    __table_args__ = (UniqueConstraint("driver_id", "service_id", name="uq_driver_service"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String, ForeignKey("services.id"), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
