"""
Wallet ledger operations.

Each function mutates the balance and inserts the matching WalletHistory row
on the caller's session; the caller owns the transaction, so the balance
change commits or rolls back together with the ride/payment change it
belongs to.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.wallet import Wallet, WalletHistory
from app.services.exceptions import InsufficientWalletBalance, ValidationError
from app.services.pricing import to_dec

logger = logging.getLogger(__name__)


async def get_wallet(db: AsyncSession, user_id: str, for_update: bool = False) -> Optional[Wallet]:
    stmt = select(Wallet).where(Wallet.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def debit(
    db: AsyncSession,
    user_id: str,
    amount: Decimal,
    *,
    description: str,
    transaction_type: str,
    ride_request_id: Optional[str] = None,
) -> WalletHistory:
    amount = to_dec(amount)
    if amount <= 0:
        raise ValidationError("Debit amount must be positive")

    wallet = await get_wallet(db, user_id, for_update=True)
    if wallet is None or Decimal(wallet.balance) < amount:
        raise InsufficientWalletBalance("Insufficient wallet balance")

    wallet.balance = to_dec(Decimal(wallet.balance) - amount)
    entry = WalletHistory(
        wallet_id=wallet.id,
        user_id=user_id,
        type="debit",
        amount=amount,
        balance=wallet.balance,
        description=description,
        transaction_type=transaction_type,
        ride_request_id=ride_request_id,
    )
    db.add(entry)
    await db.flush()
    logger.info("Wallet debit user=%s amount=%s balance=%s", user_id, amount, wallet.balance)
    return entry


async def credit(
    db: AsyncSession,
    user_id: str,
    amount: Decimal,
    *,
    description: str,
    transaction_type: str,
    ride_request_id: Optional[str] = None,
) -> WalletHistory:
    """Credit the user's wallet, opening one on first use."""
    amount = to_dec(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")

    wallet = await get_wallet(db, user_id, for_update=True)
    if wallet is None:
        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"))
        db.add(wallet)
        await db.flush()

    wallet.balance = to_dec(Decimal(wallet.balance) + amount)
    entry = WalletHistory(
        wallet_id=wallet.id,
        user_id=user_id,
        type="credit",
        amount=amount,
        balance=wallet.balance,
        description=description,
        transaction_type=transaction_type,
        ride_request_id=ride_request_id,
    )
    db.add(entry)
    await db.flush()
    logger.info("Wallet credit user=%s amount=%s balance=%s", user_id, amount, wallet.balance)
    return entry
