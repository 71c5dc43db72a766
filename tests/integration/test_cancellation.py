"""
Integration tests for rider cancellation of prepaid scheduled rides:
refund schedule, rejection cases, wallet ledger consistency.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.database import utcnow
from app.models.payment import Payment
from app.models.ride import RideRequest
from app.models.wallet import WalletHistory
from app.schemas.schemas import ScheduleRideRequest
from app.services import payment as payment_service
from app.services.activation import run_activation_pass
from app.services.booking import schedule_ride
from app.services.cancellation import cancel_scheduled_ride
from app.services.exceptions import (
    NotFoundError,
    NotOwnerError,
    RideActiveError,
    RideAlreadyCancelledError,
    RideAlreadyCompletedError,
    RideExpiredError,
    WrongRideTypeError,
)
from app.services.lifecycle import AlreadyProcessed, commit_activation
from app.services.notifications import drain_pending


def signed_sum(entries: list[WalletHistory]) -> Decimal:
    return sum(
        (e.amount if e.type == "credit" else -e.amount for e in entries),
        Decimal("0.00"),
    )


@pytest.mark.asyncio
class TestCancelScheduledRide:
    async def test_full_refund_more_than_an_hour_ahead(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2))

        cancelled, refund = await cancel_scheduled_ride(
            session_factory, notifier, ride.id, rider.id, reason="Plans changed", settings=settings
        )

        assert refund == Decimal("250.00")
        assert cancelled.status == "cancelled"
        assert cancelled.cancel_by == "rider"
        assert cancelled.reason == "Plans changed"
        payment = await seed.payment_for(ride.id)
        assert payment.status == "refunded"
        assert payment.refund_amount == Decimal("250.00")
        assert payment.refund_status == "pending"

    async def test_half_refund_within_the_hour(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(minutes=30))

        _, refund = await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)

        assert refund == Decimal("125.00")
        assert (await seed.payment_for(ride.id)).refund_amount == Decimal("125.00")

    async def test_no_refund_after_departure(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() - timedelta(minutes=5))

        cancelled, refund = await cancel_scheduled_ride(
            session_factory, notifier, ride.id, rider.id, settings=settings
        )

        assert refund == Decimal("0.00")
        assert cancelled.status == "cancelled"
        assert cancelled.reason == "Cancelled by user"
        assert (await seed.payment_for(ride.id)).status == "paid"

    async def test_notifies_rider(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2))

        await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)
        await drain_pending()

        assert notifier.titles_for(rider.id) == ["Ride Cancelled"]
        assert notifier.events == [{
            "room": f"user-{rider.id}",
            "event": "ride_status_update",
            "payload": {"rideId": ride.id, "status": "cancelled", "refundAmount": "250.00"},
        }]

    async def test_cancelled_ride_is_never_activated(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        await seed.driver(km_north=1)
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2))
        await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)

        outcome = await commit_activation(session_factory, ride.id, utcnow() + timedelta(hours=3))

        assert isinstance(outcome, AlreadyProcessed)
        assert (await seed.get(RideRequest, ride.id)).driver_id is None


@pytest.mark.asyncio
class TestGatewayRefund:
    async def test_accepted_refund_reference_recorded(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2))

        await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)
        await drain_pending()

        payment = await seed.payment_for(ride.id)
        assert payment.refund_status == "pending"
        assert payment.refund_reference.startswith("RFD-")

    async def test_rejected_refund_marked_failed(self, session_factory, seed, notifier, settings, monkeypatch):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(minutes=30))
        requested = []

        async def gateway_down(transaction_id, amount, idempotency_key, attempts=3):
            requested.append((transaction_id, amount, idempotency_key))
            return {"refund_ref": None, "status": "FAILED"}

        monkeypatch.setattr(payment_service, "request_refund", gateway_down)

        await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)
        await drain_pending()

        payment = await seed.payment_for(ride.id)
        assert requested == [("pi_test_123", Decimal("125.00"), f"refund-{payment.id}")]
        assert payment.refund_status == "failed"
        assert payment.refund_reference is None

    async def test_missing_transaction_reference_marked_failed(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() - timedelta(minutes=20))
        async with session_factory() as db:
            await db.execute(
                update(Payment).where(Payment.ride_request_id == ride.id).values(transaction_id=None)
            )
            await db.commit()

        await run_activation_pass(session_factory, notifier, utcnow(), settings)
        await drain_pending()

        assert (await seed.get(RideRequest, ride.id)).status == "expired"
        payment = await seed.payment_for(ride.id)
        assert payment.refund_status == "failed"

    async def test_wallet_refund_never_reaches_gateway(self, session_factory, seed, notifier, settings, monkeypatch):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2), payment_type="wallet")

        requested = []

        async def record(*args, **kwargs):
            requested.append(args)
            return {"refund_ref": "RFD-UNEXPECTED", "status": "PENDING"}

        monkeypatch.setattr(payment_service, "request_refund", record)

        await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)
        await drain_pending()

        assert requested == []
        payment = await seed.payment_for(ride.id)
        assert payment.refund_status == "credited"
        assert payment.refund_reference is None


@pytest.mark.asyncio
class TestCancellationRejected:
    async def test_unknown_ride(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        with pytest.raises(NotFoundError):
            await cancel_scheduled_ride(session_factory, notifier, "no-such-ride", rider.id, settings=settings)

    async def test_not_owner(self, session_factory, seed, notifier, settings):
        rider, other = await seed.rider(), await seed.rider("Meera")
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2))

        with pytest.raises(NotOwnerError):
            await cancel_scheduled_ride(session_factory, notifier, ride.id, other.id, settings=settings)

        assert (await seed.get(RideRequest, ride.id)).status == "scheduled"
        assert (await seed.payment_for(ride.id)).status == "paid"

    async def test_not_a_prepaid_scheduled_ride(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2), is_prepaid=False)

        with pytest.raises(WrongRideTypeError):
            await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)

    @pytest.mark.parametrize(
        "status, error",
        [
            ("completed", RideAlreadyCompletedError),
            ("cancelled", RideAlreadyCancelledError),
            ("active", RideActiveError),
            ("expired", RideExpiredError),
        ],
    )
    async def test_wrong_state_changes_nothing(
        self, session_factory, seed, notifier, settings, status, error
    ):
        rider = await seed.rider()
        await seed.topup(rider, Decimal("100.00"))
        ride = await seed.due_ride(
            rider, utcnow() + timedelta(hours=2), status=status, payment_type="wallet"
        )

        with pytest.raises(error):
            await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)

        assert (await seed.get(RideRequest, ride.id)).status == status
        assert (await seed.payment_for(ride.id)).status == "paid"
        assert (await seed.wallet_of(rider)).balance == Decimal("100.00")
        assert len(await seed.ledger_of(rider)) == 1

    async def test_second_cancel_rejected(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(hours=2))
        await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)

        with pytest.raises(RideAlreadyCancelledError):
            await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)


@pytest.mark.asyncio
class TestWalletConsistency:
    async def test_book_then_cancel_restores_balance(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        service = await seed.service()
        await seed.topup(rider, Decimal("500.00"))

        booking = await schedule_ride(
            session_factory, notifier, rider.id,
            ScheduleRideRequest(
                schedule_datetime=utcnow() + timedelta(hours=3),
                service_id=service.id,
                start_address="Indiranagar",
                end_address="Whitefield",
                distance_km=10.0,
                duration_seconds=1200,
                payment_type="wallet",
                transaction_id="wallet-txn-1",
            ),
            settings=settings,
        )
        assert (await seed.wallet_of(rider)).balance == Decimal("290.00")

        _, refund = await cancel_scheduled_ride(
            session_factory, notifier, booking.ride.id, rider.id, settings=settings
        )

        wallet = await seed.wallet_of(rider)
        ledger = await seed.ledger_of(rider)
        payment = await seed.payment_for(booking.ride.id)
        assert refund == Decimal("210.00")
        assert wallet.balance == Decimal("500.00")
        assert payment.refund_status == "credited"
        assert [e.transaction_type for e in ledger].count("refund") == 1
        assert signed_sum(ledger) == wallet.balance

    async def test_partial_wallet_refund_ledger(self, session_factory, seed, notifier, settings):
        rider = await seed.rider()
        ride = await seed.due_ride(rider, utcnow() + timedelta(minutes=45), payment_type="wallet")

        _, refund = await cancel_scheduled_ride(session_factory, notifier, ride.id, rider.id, settings=settings)

        wallet = await seed.wallet_of(rider)
        ledger = await seed.ledger_of(rider)
        assert refund == Decimal("125.00")
        assert wallet.balance == Decimal("125.00")
        assert ledger[0].ride_request_id == ride.id
        assert ledger[0].balance == wallet.balance
        assert signed_sum(ledger) == wallet.balance
