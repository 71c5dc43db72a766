"""
Driver matcher for scheduled rides.

Candidate pool: active, online, available, verified drivers, optionally
restricted to drivers affiliated with the ride's service. The nearest
candidate to the pickup wins; without usable coordinates the first candidate
in retrieval order is returned.

Read-only: the lifecycle commit is the only writer of driver availability.
"""
import logging
from math import radians, sin, cos, sqrt, atan2
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.ride import RideRequest
from app.models.user import DriverService, User

logger = logging.getLogger(__name__)
settings = get_settings()


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km."""
    R = 6371
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * R * atan2(sqrt(a), sqrt(1 - a))


async def candidate_drivers(
    db: AsyncSession,
    service_id: Optional[str],
    limit: int,
) -> list[User]:
    stmt = select(User).where(
        User.user_type == "driver",
        User.status == "active",
        User.is_online.is_(True),
        User.is_available.is_(True),
        User.is_verified_driver.is_(True),
    )
    if service_id:
        stmt = stmt.where(
            select(DriverService.id)
            .where(
                DriverService.driver_id == User.id,
                DriverService.service_id == service_id,
                DriverService.is_active.is_(True),
            )
            .exists()
        )
    result = await db.execute(stmt.order_by(User.created_at, User.id).limit(limit))
    return list(result.scalars().all())


def pick_nearest(
    candidates: list[User],
    pickup_lat: Optional[float],
    pickup_lng: Optional[float],
) -> Optional[User]:
    if not candidates:
        return None
    if pickup_lat is None or pickup_lng is None:
        return candidates[0]

    located = [
        (haversine_km(pickup_lat, pickup_lng, d.latitude, d.longitude), d)
        for d in candidates
        if d.latitude is not None and d.longitude is not None
    ]
    if not located:
        return candidates[0]

    # min() keeps the first of equally distant drivers, i.e. retrieval order
    return min(located, key=lambda pair: pair[0])[1]


async def find_available_driver(
    db: AsyncSession,
    ride: RideRequest,
    pool_size: Optional[int] = None,
) -> Optional[User]:
    """Best candidate for the ride, or None when no driver can take it yet."""
    candidates = await candidate_drivers(
        db, ride.service_id, pool_size or settings.matching_candidate_pool
    )
    driver = pick_nearest(candidates, ride.start_latitude, ride.start_longitude)
    if driver is None:
        logger.debug("No candidate driver for ride=%s service=%s", ride.id, ride.service_id)
    return driver
