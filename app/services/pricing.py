"""
Fare calculation for prepaid scheduled rides.

Pure computation: the caller loads the tariff and coupon, this module only
does the arithmetic.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from app.database import ensure_utc
from app.models.service import Coupon, Service

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_dec(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FareBreakdown:
    base_fare: Decimal
    minimum_fare: Decimal
    per_distance_charge: Decimal
    per_minute_charge: Decimal
    subtotal: Decimal
    coupon_discount: Decimal
    extra_charges_amount: Decimal
    total_amount: Decimal


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------

def coupon_applies(coupon: Optional[Coupon], on: datetime) -> bool:
    """A coupon is usable if active and `on` (the ride date) is inside its window."""
    if coupon is None or not coupon.is_active:
        return False
    on = ensure_utc(on)
    return ensure_utc(coupon.start_date) <= on <= ensure_utc(coupon.end_date)


def coupon_discount(coupon: Optional[Coupon], subtotal: Decimal, on: datetime) -> Decimal:
    if not coupon_applies(coupon, on):
        return ZERO
    if coupon.discount_type == "percentage":
        discount = subtotal * Decimal(str(coupon.discount)) / Decimal("100")
        if coupon.maximum_discount is not None:
            discount = min(discount, Decimal(str(coupon.maximum_discount)))
        return to_dec(discount)
    return to_dec(coupon.discount or 0)


# ---------------------------------------------------------------------------
# Fare calculation
# ---------------------------------------------------------------------------

def calculate_fare(
    service: Optional[Service],
    distance_km: float,
    duration_seconds: float,
    schedule_datetime: datetime,
    coupon: Optional[Coupon] = None,
    extra_charges: Iterable[dict] = (),
) -> FareBreakdown:
    """
    subtotal = max(base + distance * per_distance + (duration / 60) * per_minute, minimum)
    total    = max(subtotal - coupon_discount + extra_charges, 0)

    Without a tariff every rate is zero, so only extra charges are billed.
    """
    base = Decimal(str(service.base_fare)) if service else ZERO
    minimum = Decimal(str(service.minimum_fare)) if service else ZERO
    per_distance = Decimal(str(service.per_distance)) if service else ZERO
    per_minute = Decimal(str(service.per_minute_drive)) if service else ZERO

    distance_charge = Decimal(str(distance_km or 0)) * per_distance
    time_charge = Decimal(str(duration_seconds or 0)) / Decimal("60") * per_minute

    subtotal = max(base + distance_charge + time_charge, minimum)
    discount = coupon_discount(coupon, subtotal, schedule_datetime)
    extras = sum((Decimal(str(c.get("amount") or 0)) for c in extra_charges), ZERO)

    total = max(subtotal - discount + extras, ZERO)

    return FareBreakdown(
        base_fare=to_dec(base),
        minimum_fare=to_dec(minimum),
        per_distance_charge=to_dec(distance_charge),
        per_minute_charge=to_dec(time_charge),
        subtotal=to_dec(subtotal),
        coupon_discount=discount,
        extra_charges_amount=to_dec(extras),
        total_amount=to_dec(total),
    )
