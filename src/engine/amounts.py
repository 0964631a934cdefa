"""Fixed-point amount math.

Every amount that ends up in a Leg is computed here, on Python integers.
Decimal ratios (leverage, prices, buffers) only enter as exact rationals via
``Decimal.as_integer_ratio`` and every division states its rounding.
"""

from decimal import Decimal
from typing import Tuple

from src.core.constants import BPS_DENOMINATOR, MAX_DECIMALS
from src.core.errors import InvalidAmount
from src.core.models import Asset, FlashLoanQuote, TokenAmount


def _check_decimals(decimals: int) -> None:
    if not 0 <= decimals <= MAX_DECIMALS:
        raise InvalidAmount(f"Unsupported decimals: {decimals}")


def _check_non_negative(value: int, name: str) -> None:
    if value < 0:
        raise InvalidAmount(f"{name} must not be negative: {value}")


def _div(numerator: int, denominator: int, round_up: bool) -> int:
    if round_up:
        return -(-numerator // denominator)
    return numerator // denominator


def _ratio(value: Decimal) -> Tuple[int, int]:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise InvalidAmount(f"Ratio must be finite: {value}")
    return value.as_integer_ratio()


def parse_amount(text: str, decimals: int) -> TokenAmount:
    """
    Convert a human decimal string into minor units.

    Extra fractional digits beyond ``decimals`` are truncated, never rounded
    up: "1.23456789" with 6 decimals is 1_234_567.

    Raises:
        InvalidAmount: empty input, sign, several dots or non-digits
    """
    _check_decimals(decimals)
    if not isinstance(text, str):
        raise InvalidAmount(f"Amount must be a string, got {type(text).__name__}")

    cleaned = text.strip()
    if not cleaned or cleaned == ".":
        raise InvalidAmount(f"Empty amount: {text!r}")
    if cleaned[0] in "+-":
        raise InvalidAmount(f"Signed amounts are not accepted: {text!r}")

    integer, sep, fraction = cleaned.partition(".")
    if sep and "." in fraction:
        raise InvalidAmount(f"Malformed amount: {text!r}")
    for part in (integer, fraction):
        # str.isdigit accepts superscripts and other unicode digits
        if part and not (part.isascii() and part.isdigit()):
            raise InvalidAmount(f"Non-numeric amount: {text!r}")

    fraction = fraction[:decimals].ljust(decimals, "0")
    return TokenAmount(int((integer or "0") + fraction), decimals)


def format_amount(raw: int, decimals: int) -> str:
    """
    Render minor units as a human decimal string.

    Trailing fractional zeros are stripped and whole amounts have no
    decimal point: 1_500_000 with 6 decimals is "1.5", 2_000_000 is "2".
    """
    _check_decimals(decimals)
    _check_non_negative(raw, "Amount")
    if decimals == 0:
        return str(raw)

    digits = str(raw).rjust(decimals + 1, "0")
    integer, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    return f"{integer}.{fraction}" if fraction else integer


def ceil_fee(amount: int, fee_rate_bps: int) -> int:
    """
    Fee in minor units, rounded up.

    fee = (amount * bps + 9999) // 10000, so fee * 10000 >= amount * bps
    always holds and the borrower never under-pays.
    """
    _check_non_negative(amount, "Amount")
    _check_non_negative(fee_rate_bps, "Fee rate")
    return (amount * fee_rate_bps + BPS_DENOMINATOR - 1) // BPS_DENOMINATOR


def apply_bps_buffer(amount: int, buffer_bps: int) -> int:
    """Grow ``amount`` by ``buffer_bps``, rounding up (200 bps = +2%)."""
    _check_non_negative(amount, "Amount")
    _check_non_negative(buffer_bps, "Buffer")
    return _div(amount * (BPS_DENOMINATOR + buffer_bps), BPS_DENOMINATOR, round_up=True)


def bps_of(amount: int, bps: int) -> int:
    """``bps`` share of ``amount``, rounding down (9990 bps = 99.9%)."""
    _check_non_negative(amount, "Amount")
    _check_non_negative(bps, "Share")
    return amount * bps // BPS_DENOMINATOR


def mul_ratio(amount: int, ratio: Decimal, round_up: bool = False) -> int:
    """Scale an integer amount by a Decimal ratio with explicit rounding."""
    _check_non_negative(amount, "Amount")
    numerator, denominator = _ratio(ratio)
    if numerator < 0:
        raise InvalidAmount(f"Ratio must not be negative: {ratio}")
    return _div(amount * numerator, denominator, round_up)


def div_ratio(amount: int, ratio: Decimal, round_up: bool = False) -> int:
    """Divide an integer amount by a positive Decimal ratio with explicit rounding."""
    _check_non_negative(amount, "Amount")
    numerator, denominator = _ratio(ratio)
    if numerator <= 0:
        raise InvalidAmount(f"Divisor must be positive: {ratio}")
    return _div(amount * denominator, numerator, round_up)


def convert_amount(
    raw: int,
    price_in: Decimal,
    decimals_in: int,
    price_out: Decimal,
    decimals_out: int,
    round_up: bool = False,
) -> int:
    """
    Convert minor units of one asset into minor units of another.

    raw_out = raw_in / 10^d_in * price_in / price_out * 10^d_out, evaluated
    as one exact rational and rounded once.
    """
    _check_non_negative(raw, "Amount")
    _check_decimals(decimals_in)
    _check_decimals(decimals_out)
    pin_num, pin_den = _ratio(price_in)
    pout_num, pout_den = _ratio(price_out)
    if pin_num < 0 or pout_num <= 0:
        raise InvalidAmount(f"Prices must be positive: {price_in}, {price_out}")

    numerator = raw * pin_num * pout_den * 10**decimals_out
    denominator = pin_den * pout_num * 10**decimals_in
    return _div(numerator, denominator, round_up)


def quote_flash_loan(asset: Asset, amount: int, fee_rate_bps: int) -> FlashLoanQuote:
    """Flash-loan terms for ``amount`` with the fee rounded up."""
    return FlashLoanQuote(
        asset=asset,
        amount=amount,
        fee_rate_bps=fee_rate_bps,
        fee=ceil_fee(amount, fee_rate_bps),
    )
