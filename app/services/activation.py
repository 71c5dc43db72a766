"""
Scheduled ride activation poller.

Every `activation_interval_seconds` the scheduler runs one pass:
  1. Select up to `activation_batch_size` due prepaid scheduled rides with a
     paid payment and no driver, earliest departure first
  2. Commit each one independently (bounded concurrency); one ride failing
     never aborts the batch
  3. Dispatch notifications for committed outcomes, log aggregate counts
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.database import AsyncSessionLocal, ensure_utc, utcnow
from app.models.payment import Payment
from app.models.ride import RideRequest
from app.services.lifecycle import (
    ActivationOutcome,
    Activated,
    AlreadyProcessed,
    Expired,
    Retry,
    commit_activation,
    dispatch_failure,
    dispatch_outcome,
)
from app.services.notifications import Notifier
from app.services.state_machine import RideStatus

logger = logging.getLogger(__name__)


@dataclass
class ActivationReport:
    activated: int = 0
    failed: int = 0
    expired: int = 0
    retrying: int = 0
    skipped: int = 0
    error: Optional[str] = None

    def record(self, outcome: Optional[ActivationOutcome]) -> None:
        if outcome is None:
            self.failed += 1
        elif isinstance(outcome, Activated):
            self.activated += 1
        elif isinstance(outcome, Expired):
            self.expired += 1
        elif isinstance(outcome, Retry):
            self.retrying += 1
        elif isinstance(outcome, AlreadyProcessed):
            self.skipped += 1

    def as_dict(self) -> dict:
        data = asdict(self)
        if data["error"] is None:
            data.pop("error")
        return data


async def find_due_rides(db: AsyncSession, now: datetime, limit: int) -> list[RideRequest]:
    has_paid_payment = (
        select(Payment.id)
        .where(Payment.ride_request_id == RideRequest.id, Payment.status == "paid")
        .exists()
    )
    result = await db.execute(
        select(RideRequest)
        .where(
            RideRequest.is_schedule.is_(True),
            RideRequest.is_prepaid.is_(True),
            RideRequest.status == RideStatus.SCHEDULED.value,
            RideRequest.schedule_datetime <= now,
            RideRequest.driver_id.is_(None),
            has_paid_payment,
        )
        .order_by(RideRequest.schedule_datetime.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def run_activation_pass(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ActivationReport:
    session_factory = session_factory or AsyncSessionLocal
    notifier = notifier or Notifier()
    settings = settings or get_settings()
    now = ensure_utc(now) if now else utcnow()
    report = ActivationReport()

    try:
        async with session_factory() as db:
            rides = await find_due_rides(db, now, settings.activation_batch_size)
    except Exception as exc:
        logger.error("Activation pass could not load due rides: %s", exc, exc_info=True)
        report.error = str(exc)
        return report

    if not rides:
        return report

    semaphore = asyncio.Semaphore(max(settings.activation_concurrency, 1))

    async def _process(ride: RideRequest) -> Optional[ActivationOutcome]:
        async with semaphore:
            try:
                outcome = await commit_activation(
                    session_factory,
                    ride.id,
                    now,
                    grace_minutes=settings.expiry_grace_minutes,
                    timeout_seconds=settings.transaction_timeout_seconds,
                    pool_size=settings.matching_candidate_pool,
                )
            except Exception as exc:
                logger.error("Error activating ride %s: %r", ride.id, exc)
                dispatch_failure(notifier, ride)
                return None

        if isinstance(outcome, Activated):
            logger.info("Activated ride=%s driver=%s", ride.id, outcome.driver.id)
        elif isinstance(outcome, Expired):
            logger.warning("Ride %s expired (no driver), refund=%s", ride.id, outcome.refund_amount)
        elif isinstance(outcome, AlreadyProcessed):
            logger.info("Ride %s skipped: %s", ride.id, outcome.reason)
        else:
            logger.debug("Ride %s not yet assignable: %s", ride.id, outcome.reason)

        dispatch_outcome(session_factory, notifier, ride, outcome)
        return outcome

    for outcome in await asyncio.gather(*(_process(ride) for ride in rides)):
        report.record(outcome)

    logger.info(
        "Scheduled ride activation: %d activated, %d failed, %d expired, %d retrying, %d skipped",
        report.activated, report.failed, report.expired, report.retrying, report.skipped,
    )
    return report


class ActivationScheduler:
    """
    Owns the single recurring activation task. Constructed once at process
    start with its collaborators; `stop()` lets an in-flight pass finish.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.interval_seconds = self.settings.activation_interval_seconds
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            "Starting scheduled ride activation (interval=%ss batch=%s grace=%smin)",
            self.interval_seconds,
            self.settings.activation_batch_size,
            self.settings.expiry_grace_minutes,
        )
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="scheduled-ride-activation")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Scheduled ride activation stopped")

    async def run_once(self, now: Optional[datetime] = None) -> ActivationReport:
        return await run_activation_pass(self.session_factory, self.notifier, now, self.settings)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Scheduled ride activation pass crashed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
