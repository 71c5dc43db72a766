from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PaymentMethodEnum(str, Enum):
    card = "card"
    wallet = "wallet"
    cash = "cash"


class RideStatusEnum(str, Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"
    expired = "expired"


class PaymentStatusEnum(str, Enum):
    paid = "paid"
    refunded = "refunded"
    pending = "pending"


# ---------------------------------------------------------------------------
# Scheduling schemas
# ---------------------------------------------------------------------------

class ExtraCharge(BaseModel):
    title: str = ""
    amount: Decimal = Field(default=Decimal("0"), ge=0)


class ScheduleRideRequest(BaseModel):
    schedule_datetime: datetime
    service_id: Optional[str] = None

    start_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    start_address: str = Field(..., max_length=500)
    end_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    end_address: str = Field(..., max_length=500)

    distance_km: Optional[float] = Field(default=None, ge=0)
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    coupon_code: Optional[str] = None
    extra_charges: list[ExtraCharge] = Field(default_factory=list)

    payment_type: PaymentMethodEnum = PaymentMethodEnum.card
    payment_gateway: Optional[str] = None
    # Proof of prepayment; one of the two is required
    payment_reference: Optional[str] = None
    transaction_id: Optional[str] = None


class CancelRideRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RideResponse(BaseModel):
    id: str
    rider_id: str
    driver_id: Optional[str] = None
    service_id: Optional[str] = None
    status: RideStatusEnum
    is_schedule: bool
    is_prepaid: bool
    schedule_datetime: Optional[datetime] = None
    activated_at: Optional[datetime] = None

    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    start_address: str
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    end_address: str

    distance_km: float
    duration_seconds: int
    base_fare: float
    subtotal: float
    coupon_discount: float
    extra_charges_amount: float
    total_amount: float
    payment_type: str

    cancel_by: Optional[str] = None
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: str
    amount: float
    currency: str
    payment_type: str
    payment_gateway: Optional[str] = None
    status: PaymentStatusEnum
    transaction_id: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_status: Optional[str] = None
    refund_reference: Optional[str] = None

    model_config = {"from_attributes": True}


class ScheduleRideResponse(BaseModel):
    ride: RideResponse
    payment: PaymentResponse


class UpcomingRidesResponse(BaseModel):
    data: list[RideResponse]
    count: int


class CancelRideResponse(BaseModel):
    ride: RideResponse
    refund_amount: float


class ActivationReportResponse(BaseModel):
    activated: int
    failed: int
    expired: int
    retrying: int = 0
    skipped: int = 0
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Driver presence schemas
# ---------------------------------------------------------------------------

class PresenceUpdateRequest(BaseModel):
    is_online: Optional[bool] = None
    is_available: Optional[bool] = None


class PresenceResponse(BaseModel):
    id: str
    is_online: bool
    is_available: bool


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None
