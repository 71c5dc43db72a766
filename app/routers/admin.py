"""
Admin router: POST /v1/admin/scheduled-rides/activate

Runs one activation pass on demand (the same pass the background scheduler
runs every minute). Safe to call while the scheduler is running.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_session_factory
from app.middleware.auth import get_current_admin
from app.schemas.schemas import ActivationReportResponse
from app.services.activation import run_activation_pass
from app.services.notifications import Notifier, get_notifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["Admin"])


@router.post("/scheduled-rides/activate", response_model=ActivationReportResponse)
async def trigger_activation_pass(
    admin_id: str = Depends(get_current_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
):
    logger.info("Manual activation pass requested by admin=%s", admin_id)
    report = await run_activation_pass(session_factory, notifier)
    return ActivationReportResponse(**report.as_dict())
