"""
Scheduled rides router: POST /v1/rides/schedule, GET /v1/rides/upcoming,
                    GET /v1/rides/{id}, POST /v1/rides/{id}/cancel

Thin adapter: validation, state and ownership errors are raised by the
services and mapped to HTTP statuses in app.main.
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_db, get_session_factory
from app.middleware.auth import get_current_rider, get_current_user, is_admin
from app.middleware.idempotency import (
    claim_idempotency_key, release_idempotency_key, store_idempotency_result,
)
from app.models.ride import RideRequest
from app.schemas.schemas import (
    CancelRideRequest, CancelRideResponse, PaymentResponse, RideResponse,
    ScheduleRideRequest, ScheduleRideResponse, UpcomingRidesResponse,
)
from app.services.booking import list_upcoming, schedule_ride
from app.services.cancellation import cancel_scheduled_ride
from app.services.notifications import Notifier, get_notifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides", tags=["Scheduled Rides"])


@router.post("/schedule", status_code=status.HTTP_201_CREATED, response_model=ScheduleRideResponse)
async def create_scheduled_ride(
    payload: ScheduleRideRequest,
    rider_id: str = Depends(get_current_rider),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    # 1. Idempotency: replay a completed booking, refuse one still in flight
    cached = await claim_idempotency_key(rider_id, idempotency_key)
    if cached:
        return cached

    # 2. Validate, price and book atomically
    try:
        booking = await schedule_ride(session_factory, notifier, rider_id, payload)
    except Exception:
        if idempotency_key:
            await release_idempotency_key(rider_id, idempotency_key)
        raise

    response = ScheduleRideResponse(
        ride=RideResponse.model_validate(booking.ride),
        payment=PaymentResponse.model_validate(booking.payment),
    )

    # 3. Store idempotency result
    if idempotency_key:
        await store_idempotency_result(
            rider_id, idempotency_key, status.HTTP_201_CREATED, response.model_dump(mode="json")
        )
    return response


@router.get("/upcoming", response_model=UpcomingRidesResponse)
async def get_upcoming_rides(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int | None = Query(default=None, ge=1),
    all_rides: bool = Query(default=False, alias="all"),
    token_data: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rides = await list_upcoming(
        db,
        rider_id=token_data["sub"],
        is_admin=is_admin(token_data),
        include_all=all_rides,
        status=status_filter,
        limit=limit,
    )
    return UpcomingRidesResponse(
        data=[RideResponse.model_validate(r) for r in rides],
        count=len(rides),
    )


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    token_data: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ride = await db.get(RideRequest, ride_id)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")

    caller = token_data["sub"]
    if caller not in (ride.rider_id, ride.driver_id) and not is_admin(token_data):
        raise HTTPException(status_code=403, detail="Not authorized to view this ride")
    return RideResponse.model_validate(ride)


@router.post("/{ride_id}/cancel", response_model=CancelRideResponse)
async def cancel_ride(
    ride_id: str,
    payload: CancelRideRequest | None = None,
    rider_id: str = Depends(get_current_rider),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
):
    ride, refund_amount = await cancel_scheduled_ride(
        session_factory,
        notifier,
        ride_id=ride_id,
        rider_id=rider_id,
        reason=payload.reason if payload else None,
    )
    return CancelRideResponse(
        ride=RideResponse.model_validate(ride),
        refund_amount=float(refund_amount),
    )
