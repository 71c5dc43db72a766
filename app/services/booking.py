"""
Booking intake for prepaid scheduled rides, and the upcoming-rides listing.

schedule_ride:
  1. Validate schedule time (future, minimum lead time) and payment proof
  2. Load tariff + coupon, price the ride on its schedule date
  3. One serializable transaction: RideRequest(scheduled) + Payment(paid)
     (+ wallet debit and ledger entry for wallet payments)
  4. After commit: best-effort "ride scheduled" notification
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import ensure_utc, serializable_session, utcnow
from app.models.payment import Payment
from app.models.ride import RideRequest
from app.models.service import Coupon, Service
from app.schemas.schemas import ScheduleRideRequest
from app.services import wallet
from app.services.exceptions import NotFoundError, ValidationError
from app.services.matching import haversine_km
from app.services.notifications import Notifier, fire_and_forget
from app.services.pricing import FareBreakdown, calculate_fare
from app.services.state_machine import RideStatus

logger = logging.getLogger(__name__)


@dataclass
class ScheduledBooking:
    ride: RideRequest
    payment: Payment
    fare: FareBreakdown


def validate_schedule_request(
    payload: ScheduleRideRequest,
    now: datetime,
    min_lead_minutes: float,
) -> datetime:
    """Returns the schedule time normalized to UTC."""
    scheduled_at = ensure_utc(payload.schedule_datetime)
    if scheduled_at <= now:
        raise ValidationError("Scheduled datetime must be in the future")
    if scheduled_at - now < timedelta(minutes=min_lead_minutes):
        raise ValidationError(
            f"Ride must be scheduled at least {min_lead_minutes:g} minutes in advance"
        )
    if not payload.start_address.strip() or not payload.end_address.strip():
        raise ValidationError("Start address and end address are required")
    if not (payload.payment_reference or payload.transaction_id):
        raise ValidationError(
            "Payment must be completed before scheduling ride. "
            "Payment reference or transaction ID is required."
        )
    return scheduled_at


def _trip_distance_km(payload: ScheduleRideRequest) -> float:
    if payload.distance_km is not None:
        return payload.distance_km
    coords = (payload.start_latitude, payload.start_longitude, payload.end_latitude, payload.end_longitude)
    if all(c is not None for c in coords):
        return round(haversine_km(*coords), 3)
    return 0.0


async def _load_tariff(db: AsyncSession, service_id: Optional[str]) -> Optional[Service]:
    if not service_id:
        return None
    service = await db.get(Service, service_id)
    if service is None:
        raise NotFoundError("Service not found")
    return service


async def _load_coupon(db: AsyncSession, code: Optional[str]) -> Optional[Coupon]:
    if not code:
        return None
    result = await db.execute(select(Coupon).where(Coupon.code == code.strip()))
    return result.scalar_one_or_none()


async def schedule_ride(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    rider_id: str,
    payload: ScheduleRideRequest,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ScheduledBooking:
    settings = settings or get_settings()
    now = ensure_utc(now) if now else utcnow()
    scheduled_at = validate_schedule_request(payload, now, settings.min_schedule_lead_minutes)
    payment_type = payload.payment_type.value

    async def _book() -> ScheduledBooking:
        async with serializable_session(session_factory) as db:
            service = await _load_tariff(db, payload.service_id)
            coupon = await _load_coupon(db, payload.coupon_code)
            extra_charges = [c.model_dump() for c in payload.extra_charges]
            distance_km = _trip_distance_km(payload)

            fare = calculate_fare(
                service,
                distance_km=distance_km,
                duration_seconds=payload.duration_seconds or 0,
                schedule_datetime=scheduled_at,
                coupon=coupon,
                extra_charges=extra_charges,
            )

            ride = RideRequest(
                rider_id=rider_id,
                service_id=service.id if service else None,
                is_schedule=True,
                is_prepaid=True,
                schedule_datetime=scheduled_at,
                status=RideStatus.SCHEDULED.value,
                start_latitude=payload.start_latitude,
                start_longitude=payload.start_longitude,
                start_address=payload.start_address,
                end_latitude=payload.end_latitude,
                end_longitude=payload.end_longitude,
                end_address=payload.end_address,
                distance_km=Decimal(str(distance_km)),
                duration_seconds=int(payload.duration_seconds or 0),
                base_fare=fare.base_fare,
                minimum_fare=fare.minimum_fare,
                per_distance_charge=fare.per_distance_charge,
                per_minute_charge=fare.per_minute_charge,
                subtotal=fare.subtotal,
                coupon_code=payload.coupon_code if fare.coupon_discount > 0 else None,
                coupon_discount=fare.coupon_discount,
                extra_charges=extra_charges or None,
                extra_charges_amount=fare.extra_charges_amount,
                total_amount=fare.total_amount,
                payment_type=payment_type,
                payment_reference=payload.payment_reference,
            )
            db.add(ride)
            await db.flush()  # get ride.id before linking payment/ledger

            payment = Payment(
                ride_request_id=ride.id,
                user_id=rider_id,
                amount=fare.total_amount,
                payment_type=payment_type,
                payment_gateway=payload.payment_gateway or "stripe",
                status="paid",
                transaction_id=payload.transaction_id or payload.payment_reference,
            )
            db.add(payment)

            if payment_type == "wallet" and fare.total_amount > 0:
                # Raises InsufficientWalletBalance → whole booking rolls back
                await wallet.debit(
                    db,
                    rider_id,
                    fare.total_amount,
                    description="Prepaid scheduled ride payment",
                    transaction_type="ride_payment",
                    ride_request_id=ride.id,
                )

            await db.flush()
            return ScheduledBooking(ride=ride, payment=payment, fare=fare)

    booking = await asyncio.wait_for(_book(), timeout=settings.transaction_timeout_seconds)
    logger.info(
        "Scheduled ride=%s rider=%s at=%s total=%s via=%s",
        booking.ride.id, rider_id, scheduled_at.isoformat(), booking.fare.total_amount, payment_type,
    )

    _notify_scheduled(notifier, booking.ride)
    return booking


def _notify_scheduled(notifier: Notifier, ride: RideRequest) -> None:
    scheduled_at = ensure_utc(ride.schedule_datetime).isoformat()
    fire_and_forget(
        notifier.notify(
            ride.rider_id,
            "Ride Scheduled",
            f"Your ride has been scheduled for {scheduled_at}. Payment confirmed.",
            {"rideId": ride.id, "scheduledAt": scheduled_at, "type": "ride_scheduled"},
        ),
        "ride_scheduled",
    )
    fire_and_forget(
        notifier.emit(
            f"user-{ride.rider_id}",
            "ride_scheduled",
            {"rideId": ride.id, "scheduledAt": scheduled_at, "status": ride.status},
        ),
        "ride_scheduled:rider_room",
    )


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

async def list_upcoming(
    db: AsyncSession,
    rider_id: str,
    is_admin: bool = False,
    include_all: bool = False,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> list[RideRequest]:
    """
    Scheduled rides ordered by departure time. Admins asking for `all` see
    every scheduled ride (prepaid or not); everyone else sees their own
    prepaid ones.
    """
    settings = settings or get_settings()
    limit = limit or settings.upcoming_default_limit
    if limit < 1:
        raise ValidationError("limit must be positive")
    limit = min(limit, settings.upcoming_max_limit)

    stmt = select(RideRequest).where(RideRequest.is_schedule.is_(True))
    if not (is_admin and include_all):
        stmt = stmt.where(RideRequest.is_prepaid.is_(True), RideRequest.rider_id == rider_id)

    if status:
        if status not in {s.value for s in RideStatus}:
            raise ValidationError(f"Unknown status '{status}'")
        stmt = stmt.where(RideRequest.status == status)
    else:
        stmt = stmt.where(
            RideRequest.status.in_([RideStatus.SCHEDULED.value, RideStatus.ACTIVE.value])
        )

    result = await db.execute(stmt.order_by(RideRequest.schedule_datetime.asc()).limit(limit))
    return list(result.scalars().all())
