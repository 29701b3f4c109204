"""
Fixed-point money helpers.

Amounts are carried as integers in the currency's minor unit (cents for a
two-decimal currency). Decimals only appear at the edges: catalog prices
coming in, display values going out.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, str, Decimal]

DEFAULT_EXPONENT = 2


def _scale(exponent: int) -> Decimal:
    return Decimal(10) ** exponent


def to_minor(amount: Number, exponent: int = DEFAULT_EXPONENT) -> int:
    """Convert a major-unit amount (e.g. Decimal("15.50")) to minor units (1550)"""
    if isinstance(amount, float):
        amount = repr(amount)
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Not a valid amount: {amount!r}")
    return int((value * _scale(exponent)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor_exact(amount: Number, exponent: int = DEFAULT_EXPONENT) -> int:
    """Like ``to_minor`` but refuses amounts finer than one minor unit. Raises ValueError."""
    minor = to_minor(amount, exponent)
    if to_decimal(minor, exponent) != Decimal(repr(amount) if isinstance(amount, float) else amount):
        raise ValueError(f"Amount has more than {exponent} decimal places: {amount!r}")
    return minor


def to_decimal(minor: int, exponent: int = DEFAULT_EXPONENT) -> Decimal:
    """Convert minor units back to a Decimal with the currency's precision"""
    return (Decimal(minor) / _scale(exponent)).quantize(Decimal(1).scaleb(-exponent))


def parse_amount(raw: str, exponent: int = DEFAULT_EXPONENT) -> int:
    """Parse user-typed amount text into minor units. Raises ValueError."""
    if raw is None or not str(raw).strip():
        raise ValueError("Amount is required")
    return to_minor(str(raw).strip(), exponent)


def percent_of(minor: int, rate: Number) -> int:
    """Return ``rate`` percent of ``minor``, rounded half-up to a whole minor unit"""
    share = Decimal(minor) * Decimal(str(rate)) / Decimal(100)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_money(minor: int, symbol: str = "$", exponent: int = DEFAULT_EXPONENT) -> str:
    value = to_decimal(abs(minor), exponent)
    sign = "-" if minor < 0 else ""
    return f"{sign}{symbol}{value:,.{exponent}f}"
