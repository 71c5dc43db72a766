"""
PSP refund adapter.

Prepaid rides are charged by the client before booking; the engine only ever
asks the gateway to give money back. The gateway outcome is written back to
the Payment: `pending` with a refund reference until settlement, or `failed`
for operations to follow up. In production: swap the _call_psp stub
for a real Stripe / Razorpay call.
"""
import asyncio
import logging
import uuid
from decimal import Decimal

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.models.payment import Payment

logger = logging.getLogger(__name__)
settings = get_settings()


class PSPError(Exception):
    pass


async def request_refund(
    transaction_id: str | None,
    amount: Decimal,
    idempotency_key: str,
    attempts: int = 3,
) -> dict:
    """
    Ask the PSP to refund part or all of a captured charge, with up to
    `attempts` tries (exponential backoff).
    Returns: {"refund_ref": str | None, "status": "PENDING"/"FAILED"}
    """
    if not transaction_id:
        logger.error("PSP refund skipped: no gateway transaction reference (amount=%s)", amount)
        return {"refund_ref": None, "status": "FAILED"}

    for attempt in range(1, attempts + 1):
        try:
            result = await _call_psp(transaction_id, amount, idempotency_key)
            logger.info("PSP refund accepted: ref=%s amount=%s", result["refund_ref"], amount)
            return result
        except (PSPError, httpx.HTTPError) as e:
            if attempt == attempts:
                logger.error("PSP refund failed after %d attempts: %s", attempts, e)
                return {"refund_ref": None, "status": "FAILED"}
            await asyncio.sleep(2 ** attempt)

    return {"refund_ref": None, "status": "FAILED"}


async def _call_psp(transaction_id: str | None, amount: Decimal, idempotency_key: str) -> dict:
    """
    Stub PSP call. Settlement is asynchronous on the gateway side, so a
    successful request only means the refund is pending.
    """
    if float(amount) <= 0:
        raise PSPError("Amount must be positive")

    if settings.psp_api_key:
        async with httpx.AsyncClient(timeout=settings.psp_timeout_seconds) as client:
            resp = await client.post(
                f"{settings.psp_base_url}/refunds",
                headers={
                    "Authorization": f"Bearer {settings.psp_api_key}",
                    "Idempotency-Key": idempotency_key,
                },
                data={"charge": transaction_id, "amount": int(amount * 100)},
            )
            if resp.status_code >= 400:
                raise PSPError(f"PSP error {resp.status_code}: {resp.text}")
            return {"refund_ref": resp.json()["id"], "status": "PENDING"}

    # Stub: always accepted
    return {
        "refund_ref": f"RFD-{uuid.uuid4().hex[:12].upper()}",
        "status": "PENDING",
    }


async def refund_to_gateway(
    session_factory: async_sessionmaker[AsyncSession],
    payment_id: str,
    transaction_id: str | None,
    amount: Decimal,
) -> dict:
    """Request a gateway refund for a committed refund and record the result on the payment."""
    result = await request_refund(transaction_id, amount, idempotency_key=f"refund-{payment_id}")
    refund_status = "pending" if result["status"] == "PENDING" else "failed"

    async with session_factory() as db:
        await db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.refund_status == "pending")
            .values(refund_status=refund_status, refund_reference=result["refund_ref"])
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    if refund_status == "failed":
        logger.error("Gateway refund failed: payment=%s amount=%s", payment_id, amount)
    return result
