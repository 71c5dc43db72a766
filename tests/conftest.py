"""
Shared fixtures: an on-disk SQLite database per test and seeding helpers.

SQLite transactions are started with BEGIN IMMEDIATE so concurrent sessions
are serialized the way SERIALIZABLE isolation serializes them on Postgres.
Never call a service while holding one of these sessions open: the service's
own transaction would wait for the test's lock.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.config import Settings
from app.database import Base, utcnow
from app.models.payment import Payment
from app.models.ride import RideRequest
from app.models.service import Coupon, Service
from app.models.user import DriverService, User
from app.models.wallet import Wallet, WalletHistory
from app.services import wallet as wallet_service
from app.services.notifications import drain_pending

PICKUP = (12.9716, 77.5946)
KM_PER_DEGREE_LAT = 111.19492664455873  # R=6371 km


class RecordingNotifier:
    """In-memory Notifier double: records what would have been delivered."""

    def __init__(self, fail: bool = False, fail_for: tuple = ()):
        self.fail = fail
        self.fail_for = set(fail_for)
        self.notifications: list[dict] = []
        self.events: list[dict] = []

    async def notify(self, user_id, title, body, data):
        if self.fail or user_id in self.fail_for:
            raise RuntimeError("push gateway down")
        self.notifications.append({"user_id": user_id, "title": title, "body": body, "data": data})

    async def emit(self, room, event, payload):
        if self.fail:
            raise RuntimeError("redis down")
        self.events.append({"room": room, "event": event, "payload": payload})

    def titles_for(self, user_id: str) -> list[str]:
        return [n["title"] for n in self.notifications if n["user_id"] == user_id]


class Seeder:
    def __init__(self, session_factory):
        self.sf = session_factory

    async def _add(self, obj):
        async with self.sf() as db:
            db.add(obj)
            await db.commit()
        return obj

    async def rider(self, first_name: str = "Asha") -> User:
        return await self._add(User(first_name=first_name, last_name="Rider", user_type="rider"))

    async def driver(
        self,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        km_north: Optional[float] = None,
        service: Optional[Service] = None,
        **overrides,
    ) -> User:
        """Online, available, verified driver; `km_north` places them that far north of PICKUP."""
        if km_north is not None:
            lat, lng = PICKUP[0] + km_north / KM_PER_DEGREE_LAT, PICKUP[1]
        fields = dict(
            first_name="Ravi",
            last_name="Driver",
            user_type="driver",
            status="active",
            is_online=True,
            is_available=True,
            is_verified_driver=True,
            latitude=lat,
            longitude=lng,
        )
        fields.update(overrides)
        driver = await self._add(User(**fields))
        if service is not None:
            await self._add(DriverService(driver_id=driver.id, service_id=service.id, is_active=True))
        return driver

    async def service(self, **overrides) -> Service:
        fields = dict(
            name="Sedan",
            base_fare=Decimal("50"),
            minimum_fare=Decimal("100"),
            per_distance=Decimal("12"),
            per_minute_drive=Decimal("2"),
        )
        fields.update(overrides)
        return await self._add(Service(**fields))

    async def coupon(self, code: str = "SAVE10", **overrides) -> Coupon:
        now = utcnow()
        fields = dict(
            code=code,
            discount_type="percentage",
            discount=Decimal("10"),
            maximum_discount=Decimal("50"),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
            is_active=True,
        )
        fields.update(overrides)
        return await self._add(Coupon(**fields))

    async def topup(self, user: User, amount: Decimal) -> None:
        async with self.sf() as db:
            await wallet_service.credit(
                db, user.id, amount, description="Wallet top-up", transaction_type="topup"
            )
            await db.commit()

    async def due_ride(
        self,
        rider: User,
        schedule_datetime: datetime,
        amount: Decimal = Decimal("250.00"),
        payment_type: str = "card",
        payment_status: str = "paid",
        with_payment: bool = True,
        service: Optional[Service] = None,
        pickup: Optional[tuple] = PICKUP,
        **overrides,
    ) -> RideRequest:
        """A booked prepaid scheduled ride, written directly (bypasses the lead-time check)."""
        fields = dict(
            rider_id=rider.id,
            service_id=service.id if service else None,
            is_schedule=True,
            is_prepaid=True,
            schedule_datetime=schedule_datetime,
            status="scheduled",
            start_latitude=pickup[0] if pickup else None,
            start_longitude=pickup[1] if pickup else None,
            start_address="MG Road, Bengaluru",
            end_address="Airport, Bengaluru",
            total_amount=amount,
            payment_type=payment_type,
            payment_reference="pi_test_123",
        )
        fields.update(overrides)
        async with self.sf() as db:
            ride = RideRequest(**fields)
            db.add(ride)
            await db.flush()
            if with_payment:
                db.add(Payment(
                    ride_request_id=ride.id,
                    user_id=rider.id,
                    amount=amount,
                    payment_type=payment_type,
                    payment_gateway="stripe",
                    status=payment_status,
                    transaction_id="pi_test_123",
                ))
            await db.commit()
        return ride

    # -- reads ---------------------------------------------------------------

    async def get(self, model, ident):
        async with self.sf() as db:
            return await db.get(model, ident)

    async def payment_for(self, ride_id: str) -> Optional[Payment]:
        async with self.sf() as db:
            result = await db.execute(select(Payment).where(Payment.ride_request_id == ride_id))
            return result.scalar_one_or_none()

    async def count(self, model) -> int:
        async with self.sf() as db:
            result = await db.execute(select(model))
            return len(result.scalars().all())

    async def wallet_of(self, user: User) -> Optional[Wallet]:
        async with self.sf() as db:
            result = await db.execute(select(Wallet).where(Wallet.user_id == user.id))
            return result.scalar_one_or_none()

    async def ledger_of(self, user: User) -> list[WalletHistory]:
        async with self.sf() as db:
            result = await db.execute(
                select(WalletHistory).where(WalletHistory.user_id == user.id)
            )
            return list(result.scalars().all())


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await drain_pending()
    await engine.dispose()


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        activation_interval_seconds=0.05,
        activation_batch_size=50,
        activation_concurrency=5,
        expiry_grace_minutes=15,
        min_schedule_lead_minutes=30,
        transaction_timeout_seconds=30,
        push_gateway_url="",
    )
