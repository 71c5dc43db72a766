"""
Drivers router: PATCH /v1/drivers/{id}/presence, POST /v1/drivers/{id}/location

Keeps the driver state the scheduled-ride matcher reads (online/available
flags and last known position) up to date.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import ensure_utc, get_db, utcnow
from app.middleware.auth import get_current_driver
from app.models.user import User
from app.schemas.schemas import LocationUpdateRequest, PresenceResponse, PresenceUpdateRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


def _ensure_self(driver_id: str, caller_id: str) -> None:
    if driver_id != caller_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot update another driver")


@router.patch("/{driver_id}/presence", response_model=PresenceResponse)
async def update_presence(
    driver_id: str,
    payload: PresenceUpdateRequest,
    caller_id: str = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    """Go online/offline and toggle availability for new assignments."""
    _ensure_self(driver_id, caller_id)
    result = await db.execute(
        select(User).where(User.id == driver_id, User.user_type == "driver").with_for_update()
    )
    driver = result.scalar_one_or_none()
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")

    if payload.is_online is not None:
        driver.is_online = payload.is_online
        if not payload.is_online:
            # Offline drivers can't be assigned
            driver.is_available = False
    if payload.is_available is not None:
        if payload.is_available and not driver.is_online:
            raise HTTPException(status_code=409, detail="Driver must be online to become available")
        driver.is_available = payload.is_available

    await db.commit()
    logger.info(
        "Driver %s presence online=%s available=%s", driver_id, driver.is_online, driver.is_available
    )
    return PresenceResponse(id=driver.id, is_online=driver.is_online, is_available=driver.is_available)


@router.post("/{driver_id}/location", status_code=status.HTTP_204_NO_CONTENT)
async def update_location(
    driver_id: str,
    payload: LocationUpdateRequest,
    caller_id: str = Depends(get_current_driver),
    db: AsyncSession = Depends(get_db),
):
    """Persist the driver's last known position (used for nearest-driver matching)."""
    _ensure_self(driver_id, caller_id)
    reported_at = ensure_utc(payload.timestamp) if payload.timestamp else utcnow()
    result = await db.execute(
        update(User)
        .where(User.id == driver_id, User.user_type == "driver")
        .values(latitude=payload.lat, longitude=payload.lng, location_updated_at=reported_at)
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Driver not found")
    await db.commit()
