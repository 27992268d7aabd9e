"""Utilities for working with monetary values in ChainRise."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
BPS_DIVISOR = Decimal("10000")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` with two decimal places."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", "").lstrip("$"))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported amount type: {type(value)!r}")

    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: AmountLike) -> int:
    """Return ``value`` (in dollars) as an integer number of cents."""

    return int(to_decimal(value) * 100)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive(amount: Decimal, *, allow_zero: bool = False) -> Decimal:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < Decimal("0"):
            raise ValueError("Amount must be zero or greater.")
    else:
        if amount <= Decimal("0"):
            raise ValueError("Amount must be greater than zero.")
    return amount


def apply_rate(cents: int, rate_bps: int) -> int:
    """Return ``rate_bps`` basis points of ``cents``, rounded half-up to the cent."""

    value = Decimal(cents) * Decimal(rate_bps) / BPS_DIVISOR
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def bps_to_percent(rate_bps: int) -> Decimal:
    return (Decimal(rate_bps) / 100).quantize(CENT)


def format_currency(cents: int) -> str:
    """Return ``cents`` as a currency formatted string (e.g. ``$12.34``)."""

    amount = cents_to_decimal(cents)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


__all__ = [
    "AmountLike",
    "CENT",
    "apply_rate",
    "bps_to_percent",
    "cents_to_decimal",
    "format_currency",
    "require_positive",
    "to_cents",
    "to_decimal",
]
