"""
Rider-initiated cancellation of a prepaid scheduled ride.

Refund policy (relative to the scheduled departure):
  more than 1 hour before   → full refund
  0–1 hour before           → 50%
  at/after departure        → nothing
  ride active or completed  → nothing (and cancellation is rejected anyway)
"""
import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import ensure_utc, serializable_session, utcnow
from app.models.payment import Payment
from app.models.ride import RideRequest
from app.services import wallet
from app.services.exceptions import (
    NotFoundError,
    NotOwnerError,
    RideActiveError,
    RideAlreadyCancelledError,
    RideAlreadyCompletedError,
    RideExpiredError,
    WrongRideTypeError,
    WrongStateError,
)
from app.services.notifications import Notifier, fire_and_forget
from app.services.payment import refund_to_gateway
from app.services.pricing import ZERO, to_dec
from app.services.state_machine import RideStatus, can_transition

logger = logging.getLogger(__name__)


def calculate_refund_amount(
    ride: RideRequest,
    now: datetime,
    full_refund_hours: float = 1.0,
    partial_refund_ratio: float = 0.5,
) -> Decimal:
    if ride.status in (RideStatus.ACTIVE.value, RideStatus.COMPLETED.value):
        return ZERO

    hours_until_ride = (ensure_utc(ride.schedule_datetime) - ensure_utc(now)).total_seconds() / 3600
    amount = Decimal(str(ride.total_amount))

    if hours_until_ride > full_refund_hours:
        return to_dec(amount)
    if hours_until_ride > 0:
        return to_dec(amount * Decimal(str(partial_refund_ratio)))
    return ZERO


def ensure_cancellable(ride: Optional[RideRequest], rider_id: str) -> RideRequest:
    """Each precondition is a distinct rejection; none of them mutates anything."""
    if ride is None:
        raise NotFoundError("Ride not found")
    if ride.rider_id != rider_id:
        raise NotOwnerError("Not authorized to cancel this ride")
    if not (ride.is_schedule and ride.is_prepaid):
        raise WrongRideTypeError("This ride cannot be cancelled through this endpoint")
    if ride.status == RideStatus.COMPLETED.value:
        raise RideAlreadyCompletedError("Cannot cancel a completed ride")
    if ride.status == RideStatus.CANCELLED.value:
        raise RideAlreadyCancelledError("Ride is already cancelled")
    if ride.status == RideStatus.ACTIVE.value:
        raise RideActiveError("Cannot cancel an active ride. Please contact support.")
    if ride.status == RideStatus.EXPIRED.value:
        raise RideExpiredError("Ride has expired and was already refunded")
    if not can_transition(ride.status, RideStatus.CANCELLED.value):
        raise WrongStateError(f"Ride in status '{ride.status}' cannot be cancelled")
    return ride


async def _paid_payment(db: AsyncSession, ride_id: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.ride_request_id == ride_id, Payment.status == "paid")
        .order_by(Payment.created_at)
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def cancel_scheduled_ride(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    ride_id: str,
    rider_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> tuple[RideRequest, Decimal]:
    settings = settings or get_settings()
    now = ensure_utc(now) if now else utcnow()

    async def _cancel() -> tuple[RideRequest, Decimal, Optional[Payment]]:
        async with serializable_session(session_factory) as db:
            ride = ensure_cancellable(await db.get(RideRequest, ride_id), rider_id)
            refund_amount = calculate_refund_amount(
                ride, now, settings.full_refund_hours, settings.partial_refund_ratio
            )

            # CAS: the poller may have activated/expired the ride since we read it
            result = await db.execute(
                update(RideRequest)
                .where(
                    RideRequest.id == ride.id,
                    RideRequest.status == RideStatus.SCHEDULED.value,
                    RideRequest.driver_id.is_(None),
                )
                .values(
                    status=RideStatus.CANCELLED.value,
                    cancel_by="rider",
                    reason=reason or "Cancelled by user",
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise WrongStateError("Ride is no longer scheduled")

            payment = None
            if refund_amount > 0:
                payment = await _paid_payment(db, ride.id)
            if payment is not None:
                payment.status = "refunded"
                payment.refund_amount = refund_amount
                if payment.payment_type == "wallet":
                    await wallet.credit(
                        db,
                        rider_id,
                        refund_amount,
                        description=f"Refund for cancelled scheduled ride #{ride.id}",
                        transaction_type="refund",
                        ride_request_id=ride.id,
                    )
                    payment.refund_status = "credited"
                else:
                    payment.refund_status = "pending"
            elif refund_amount > 0:
                logger.warning("Ride %s has no paid payment; nothing to refund", ride.id)
                refund_amount = ZERO

            await db.flush()
            await db.refresh(ride)
            return ride, refund_amount, payment

    ride, refund_amount, payment = await asyncio.wait_for(
        _cancel(), timeout=settings.transaction_timeout_seconds
    )
    logger.info("Cancelled ride=%s rider=%s refund=%s", ride.id, rider_id, refund_amount)

    if payment is not None and payment.refund_status == "pending":
        fire_and_forget(
            refund_to_gateway(session_factory, payment.id, payment.transaction_id, refund_amount),
            "gateway_refund",
        )
    _notify_cancelled(notifier, ride, refund_amount)
    return ride, refund_amount


def _notify_cancelled(notifier: Notifier, ride: RideRequest, refund_amount: Decimal) -> None:
    body = "Your scheduled ride has been cancelled."
    if refund_amount > 0:
        body += f" Refund of {refund_amount} will be processed."
    fire_and_forget(
        notifier.notify(
            ride.rider_id,
            "Ride Cancelled",
            body,
            {"rideId": ride.id, "refundAmount": str(refund_amount), "type": "ride_cancelled"},
        ),
        "ride_cancelled",
    )
    fire_and_forget(
        notifier.emit(
            f"user-{ride.rider_id}",
            "ride_status_update",
            {"rideId": ride.id, "status": ride.status, "refundAmount": str(refund_amount)},
        ),
        "ride_cancelled:rider_room",
    )
