"""
Lifecycle commit for a due scheduled ride.

Flow (one SERIALIZABLE transaction, bounded by a timeout):
  1. Re-read the ride; anything but an unassigned `scheduled` ride is
     AlreadyProcessed (a concurrent pass or a cancellation won)
  2. Ask the matcher for a driver
  3a. Driver found → CAS ride to `active` + CAS driver to unavailable
  3b. No driver and past the grace window → CAS ride to `expired`, refund
  3c. No driver within the grace window → Retry on the next pass

Every write is a conditional UPDATE whose row count is checked, so two
overlapping attempts end with one winner and one no-op even where the store
does not raise serialization failures.

Outcomes are returned as values; notifications are dispatched by the caller
only after the transaction has committed (see dispatch_outcome).
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import ensure_utc, is_serialization_failure, serializable_session
from app.models.payment import Payment
from app.models.ride import RideRequest
from app.models.user import User
from app.services import wallet
from app.services.matching import find_available_driver
from app.services.notifications import Notifier, fire_and_forget
from app.services.payment import refund_to_gateway
from app.services.pricing import ZERO, to_dec
from app.services.state_machine import RideStatus, can_transition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Activated:
    driver: User


@dataclass(frozen=True)
class Retry:
    reason: str


@dataclass(frozen=True)
class Expired:
    refund_amount: Decimal
    payment: Optional[Payment] = None


@dataclass(frozen=True)
class AlreadyProcessed:
    reason: str


ActivationOutcome = Union[Activated, Retry, Expired, AlreadyProcessed]


class _DriverClaimed(Exception):
    """Another ride took the driver between matching and commit; rolls back."""


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------

async def commit_activation(
    session_factory: async_sessionmaker[AsyncSession],
    ride_id: str,
    now: datetime,
    grace_minutes: float = 15.0,
    timeout_seconds: float = 10.0,
    pool_size: Optional[int] = None,
) -> ActivationOutcome:
    """
    Raises on unexpected store errors and on timeout; the ride is then left
    untouched and picked up again by the next pass.

    A serialization failure means a concurrent transaction touched the same
    rows first. The ride is re-read: if it has left `scheduled` the other
    attempt won (AlreadyProcessed), otherwise the next pass retries it.
    """
    now = ensure_utc(now)
    try:
        return await asyncio.wait_for(
            _commit(session_factory, ride_id, now, grace_minutes, pool_size),
            timeout=timeout_seconds,
        )
    except _DriverClaimed as exc:
        logger.info("Driver %s claimed concurrently; ride=%s will retry", exc, ride_id)
        return Retry("driver_claimed")
    except DBAPIError as exc:
        if not is_serialization_failure(exc):
            raise
        logger.info("Serialization conflict activating ride=%s", ride_id)
        return await _after_conflict(session_factory, ride_id)


async def _after_conflict(
    session_factory: async_sessionmaker[AsyncSession], ride_id: str
) -> ActivationOutcome:
    async with session_factory() as db:
        status = await db.scalar(select(RideRequest.status).where(RideRequest.id == ride_id))
    if status != RideStatus.SCHEDULED.value:
        return AlreadyProcessed("already_processed")
    return Retry("serialization_conflict")


async def _commit(
    session_factory: async_sessionmaker[AsyncSession],
    ride_id: str,
    now: datetime,
    grace_minutes: float,
    pool_size: Optional[int],
) -> ActivationOutcome:
    async with serializable_session(session_factory) as db:
        result = await db.execute(select(RideRequest).where(RideRequest.id == ride_id))
        ride = result.scalar_one_or_none()
        if ride is None:
            return AlreadyProcessed("missing")
        if not can_transition(ride.status, RideStatus.ACTIVE.value):
            return AlreadyProcessed("already_processed")
        if ride.driver_id:
            return AlreadyProcessed("driver_assigned")

        driver = await find_available_driver(db, ride, pool_size)

        if driver is None:
            minutes_past = (now - ensure_utc(ride.schedule_datetime)).total_seconds() / 60
            if minutes_past > grace_minutes:
                return await _expire(db, ride)
            return Retry("no_driver")

        claimed = await db.execute(
            update(RideRequest)
            .where(
                RideRequest.id == ride.id,
                RideRequest.status == RideStatus.SCHEDULED.value,
                RideRequest.driver_id.is_(None),
            )
            .values({
                RideRequest.status: RideStatus.ACTIVE.value,
                RideRequest.driver_id: driver.id,
                RideRequest.activated_at: now,
            })
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            return AlreadyProcessed("already_processed")

        taken = await db.execute(
            update(User)
            .where(User.id == driver.id, User.is_available.is_(True))
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        if taken.rowcount != 1:
            raise _DriverClaimed(driver.id)

        await db.refresh(driver)
        return Activated(driver=driver)


async def _expire(db: AsyncSession, ride: RideRequest) -> ActivationOutcome:
    expired = await db.execute(
        update(RideRequest)
        .where(
            RideRequest.id == ride.id,
            RideRequest.status == RideStatus.SCHEDULED.value,
            RideRequest.driver_id.is_(None),
        )
        .values(status=RideStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    if expired.rowcount != 1:
        return AlreadyProcessed("already_processed")

    result = await db.execute(
        select(Payment)
        .where(Payment.ride_request_id == ride.id, Payment.status == "paid")
        .order_by(Payment.created_at)
        .limit(1)
        .with_for_update()
    )
    payment = result.scalar_one_or_none()
    if payment is None:
        return Expired(refund_amount=ZERO)

    refund_amount = to_dec(payment.amount)
    payment.status = "refunded"
    payment.refund_amount = refund_amount
    if payment.payment_type == "wallet" and refund_amount > 0:
        await wallet.credit(
            db,
            ride.rider_id,
            refund_amount,
            description=f"Refund for expired scheduled ride #{ride.id}",
            transaction_type="refund",
            ride_request_id=ride.id,
        )
        payment.refund_status = "credited"
    else:
        payment.refund_status = "pending"
    await db.flush()
    return Expired(refund_amount=refund_amount, payment=payment)


# ---------------------------------------------------------------------------
# Post-commit side effects
# ---------------------------------------------------------------------------


def dispatch_outcome(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    ride: RideRequest,
    outcome: ActivationOutcome,
) -> None:
    """
    Fire-and-forget side effects for a committed outcome. Each delivery is
    its own task, so one failing push never holds back the others.
    """
    if isinstance(outcome, Activated):
        _notify_activated(notifier, ride, outcome.driver)
    elif isinstance(outcome, Expired):
        payment = outcome.payment
        if payment is not None and payment.refund_status == "pending" and outcome.refund_amount > 0:
            fire_and_forget(
                refund_to_gateway(session_factory, payment.id, payment.transaction_id, outcome.refund_amount),
                "gateway_refund",
            )
        _notify_expired(notifier, ride, outcome.refund_amount)


def _notify_activated(notifier: Notifier, ride: RideRequest, driver: User) -> None:
    driver_name = driver.full_name
    fire_and_forget(
        notifier.notify(
            ride.rider_id,
            "Ride Activated",
            f"Your scheduled ride has been activated. Driver {driver_name} is on the way.",
            {
                "rideId": ride.id,
                "driverId": driver.id,
                "driverName": driver_name,
                "driverPhone": driver.contact_number,
                "type": "ride_activated",
            },
        ),
        "ride_activated:rider",
    )
    fire_and_forget(
        notifier.notify(
            driver.id,
            "New Ride Assigned",
            f"You have been assigned a scheduled ride. Pickup: {ride.start_address or 'Location provided'}",
            {
                "rideId": ride.id,
                "riderId": ride.rider_id,
                "pickupAddress": ride.start_address,
                "dropoffAddress": ride.end_address,
                "type": "new_ride_assigned",
            },
        ),
        "ride_activated:driver",
    )
    fire_and_forget(
        notifier.emit(
            f"user-{ride.rider_id}",
            "ride_status_update",
            {
                "rideId": ride.id,
                "status": RideStatus.ACTIVE.value,
                "driver": {"id": driver.id, "name": driver_name, "phone": driver.contact_number},
            },
        ),
        "ride_activated:rider_room",
    )
    fire_and_forget(
        notifier.emit(
            f"driver-{driver.id}",
            "new_ride_request",
            {
                "rideId": ride.id,
                "pickup": {
                    "address": ride.start_address,
                    "latitude": ride.start_latitude,
                    "longitude": ride.start_longitude,
                },
                "dropoff": {
                    "address": ride.end_address,
                    "latitude": ride.end_latitude,
                    "longitude": ride.end_longitude,
                },
            },
        ),
        "ride_activated:driver_room",
    )


def _notify_expired(notifier: Notifier, ride: RideRequest, refund_amount: Decimal) -> None:
    fire_and_forget(
        notifier.notify(
            ride.rider_id,
            "Ride Expired",
            "Your scheduled ride could not be activated as no driver was available. "
            "A refund will be processed.",
            {"rideId": ride.id, "refundAmount": str(refund_amount), "type": "ride_expired"},
        ),
        "ride_expired",
    )
    fire_and_forget(
        notifier.emit(
            f"user-{ride.rider_id}",
            "ride_status_update",
            {"rideId": ride.id, "status": RideStatus.EXPIRED.value, "refundAmount": str(refund_amount)},
        ),
        "ride_expired:rider_room",
    )


def dispatch_failure(notifier: Notifier, ride: RideRequest) -> None:
    """The ride stays scheduled; tell the rider the next pass will try again."""
    fire_and_forget(
        notifier.notify(
            ride.rider_id,
            "Ride Activation Failed",
            "We could not activate your scheduled ride yet. We will keep trying.",
            {"rideId": ride.id, "type": "ride_activation_failed"},
        ),
        "ride_activation_failed",
    )
