"""Integer fixed-point arithmetic for reserves, prices and fees.

All amounts are int base units. No float, no Decimal. Prices are
stable-per-asset scaled by PRICE_SCALE. Results are bounded to u128, the
widest counter any settlement ledger for these markets keeps.
"""

import math

from src.qm_common.errors import AmountOverflowError, InputError

BPS_DENOMINATOR = 10_000
PPM_DENOMINATOR = 1_000_000
PRICE_SCALE = 10**12

U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1


def _check_range(value: int) -> int:
    if value > U128_MAX:
        raise AmountOverflowError()
    return value


def mul_div(a: int, b: int, c: int) -> int:
    """floor(a * b / c) with a full-width intermediate."""
    if c == 0:
        raise InputError(1016, "Division by zero", 422)
    return _check_range((a * b) // c)


def mul_div_up(a: int, b: int, c: int) -> int:
    """ceil(a * b / c). Used wherever rounding must favour the pool."""
    if c == 0:
        raise InputError(1016, "Division by zero", 422)
    return _check_range((a * b + c - 1) // c)


def sqrt(n: int) -> int:
    """Integer floor square root."""
    if n < 0:
        raise InputError(1016, "Square root of negative number", 422)
    return math.isqrt(n)


def clamp_price(price: int, cap: int) -> int:
    """Clamp a scaled price into [0, cap]."""
    if price < 0:
        return 0
    return min(price, cap)


def price_of(asset_reserve: int, stable_reserve: int, cap: int) -> int:
    """Marginal price stable/asset scaled by PRICE_SCALE, clamped to cap.

    An empty asset side has no finite price; report the cap.
    """
    if asset_reserve == 0:
        return cap
    return clamp_price(mul_div(stable_reserve, PRICE_SCALE, asset_reserve), cap)


def bps_of(amount: int, bps: int) -> int:
    """floor(amount * bps / 10000)."""
    return mul_div(amount, bps, BPS_DENOMINATOR)
