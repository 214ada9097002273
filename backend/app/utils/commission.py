from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

DELIVERY_SPLIT_RULE_V1 = "DELIVERY_SPLIT_75_25_V1"

DELIVERY_DRIVER_BPS = 7500
DELIVERY_PLATFORM_BPS = 2500

# $1 per 4 km, never below $1.
FEE_KM_PER_UNIT = Decimal("4")
MIN_DELIVERY_FEE_MINOR = 100


def _clamp_minor(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except (TypeError, ValueError):
        parsed = 0
    return parsed if parsed > 0 else 0


def money_major_to_minor(amount: float | Decimal | int | str | None) -> int:
    try:
        parsed = Decimal(str(amount if amount is not None else 0))
    except ArithmeticError:
        parsed = Decimal("0")
    minor = (parsed * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return _clamp_minor(int(minor))


def money_minor_to_major(minor: int | float | Decimal | None) -> float:
    parsed = Decimal(_clamp_minor(minor))
    return float((parsed / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _bps_minor_half_up(amount_minor: int, bps: int) -> int:
    amt = Decimal(_clamp_minor(amount_minor))
    rate = Decimal(int(max(0, bps)))
    raw = (amt * rate) / Decimal("10000")
    return _clamp_minor(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def delivery_fee_minor_for_distance(distance_km: float | Decimal | None) -> int:
    try:
        km = Decimal(str(distance_km or 0))
    except ArithmeticError:
        km = Decimal("0")
    if km < 0:
        km = Decimal("0")
    fee_major = (km / FEE_KM_PER_UNIT).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    fee_minor = int(fee_major * 100)
    return max(MIN_DELIVERY_FEE_MINOR, fee_minor)


def delivery_fee_for_distance(distance_km: float | Decimal | None) -> float:
    return money_minor_to_major(delivery_fee_minor_for_distance(distance_km))


def split_delivery_fee_minor(fee_minor: int) -> tuple[int, int]:
    """Return (driver_minor, platform_minor); the two always add back to the fee."""
    total = _clamp_minor(fee_minor)
    if total <= 0:
        return 0, 0
    driver_minor = _bps_minor_half_up(total, DELIVERY_DRIVER_BPS)
    platform_minor = total - driver_minor
    return int(driver_minor), int(max(0, platform_minor))


def split_delivery_fee(fee: float | Decimal | int | None) -> dict:
    fee_minor = money_major_to_minor(fee)
    driver_minor, platform_minor = split_delivery_fee_minor(fee_minor)
    return {
        "rule": DELIVERY_SPLIT_RULE_V1,
        "delivery_fee": money_minor_to_major(fee_minor),
        "driver_earning": money_minor_to_major(driver_minor),
        "platform_fee": money_minor_to_major(platform_minor),
        "delivery_fee_minor": fee_minor,
        "driver_earning_minor": driver_minor,
        "platform_fee_minor": platform_minor,
    }


def order_total(item_price: float | Decimal | int | None, delivery_fee: float | Decimal | int | None) -> float:
    return money_minor_to_major(money_major_to_minor(item_price) + money_major_to_minor(delivery_fee))
