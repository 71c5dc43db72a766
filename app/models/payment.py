import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_request_id: Mapped[str] = mapped_column(
        String, ForeignKey("ride_requests.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(5), default="INR")
    # cash | card | wallet
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    payment_gateway: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # paid | refunded | pending
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    # credited (wallet) | pending (awaiting gateway settlement) | failed (gateway rejected)
    refund_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    refund_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
