"""Plan tiers and the accrual arithmetic behind locked investments."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional, Tuple

from .money import apply_rate

DEFAULT_LOCK_DAYS = 60
SECONDS_PER_DAY = 24 * 60 * 60
DAYS_PER_MONTH = 30


@dataclass(frozen=True, slots=True)
class PlanTier:
    """A fixed daily-rate plan covering a band of principal amounts."""

    code: str
    title: str
    rate_bps: int
    min_cents: int
    max_cents: int
    duration_days: int = DEFAULT_LOCK_DAYS
    interval: str = "daily"
    referral_bonus_bps: int = 1000


DEFAULT_PLAN_TIERS: Tuple[PlanTier, ...] = (
    PlanTier("plan_1", "Plan 1", 220, 100_00, 2_999_00),
    PlanTier("plan_2", "Plan 2", 440, 3_000_00, 9_999_00),
    PlanTier("plan_3", "Plan 3", 660, 10_000_00, 29_999_00),
    PlanTier("plan_4", "Plan 4", 880, 30_000_00, 59_999_00),
)

_RATES_BY_CODE: Mapping[str, int] = {tier.code: tier.rate_bps for tier in DEFAULT_PLAN_TIERS}


def tier_for_amount(cents: int, tiers: Tuple[PlanTier, ...] = DEFAULT_PLAN_TIERS) -> Optional[PlanTier]:
    """Return the tier whose band holds ``cents``.

    Bands are treated as contiguous: an amount that falls between one tier's
    maximum and the next tier's minimum (for example $2,999.50) stays in the
    lower tier. Amounts below the first minimum or above the last maximum have
    no tier.
    """

    ordered = sorted(tiers, key=lambda tier: tier.min_cents)
    for index, tier in enumerate(ordered):
        if cents < tier.min_cents:
            return None
        upper = ordered[index + 1].min_cents if index + 1 < len(ordered) else tier.max_cents + 1
        if cents < upper:
            return tier
    return None


def daily_rate_bps(plan_code: Optional[str]) -> int:
    """Return the daily rate for a plan code; unknown codes earn nothing."""

    if not plan_code:
        return 0
    return _RATES_BY_CODE.get(plan_code, 0)


def daily_earnings_cents(principal_cents: int, rate_bps: int) -> int:
    return apply_rate(principal_cents, rate_bps)


def maturity_date(opened_at: datetime, lock_days: int = DEFAULT_LOCK_DAYS) -> datetime:
    return opened_at + timedelta(days=lock_days)


def days_remaining(maturity: Optional[datetime], now: datetime) -> int:
    """Whole days left until ``maturity``, never negative."""

    if maturity is None:
        return 0
    seconds = (maturity - now).total_seconds()
    return max(0, math.floor(seconds / SECONDS_PER_DAY))


def accrued_earnings_cents(
    principal_cents: int,
    rate_bps: int,
    remaining_days: int,
    lock_days: int = DEFAULT_LOCK_DAYS,
) -> int:
    """Earnings paid so far for an investment with ``remaining_days`` left."""

    elapsed = max(0, lock_days - max(0, remaining_days))
    return daily_earnings_cents(principal_cents, rate_bps) * elapsed


def progress_percent(remaining_days: int, lock_days: int = DEFAULT_LOCK_DAYS) -> float:
    if lock_days <= 0:
        return 100.0
    elapsed = lock_days - max(0, min(remaining_days, lock_days))
    return round(elapsed / lock_days * 100, 2)


def monthly_earnings_cents(principal_cents: int, rate_bps: int) -> int:
    return daily_earnings_cents(principal_cents, rate_bps) * DAYS_PER_MONTH


__all__ = [
    "DEFAULT_LOCK_DAYS",
    "DEFAULT_PLAN_TIERS",
    "PlanTier",
    "accrued_earnings_cents",
    "daily_earnings_cents",
    "daily_rate_bps",
    "days_remaining",
    "maturity_date",
    "monthly_earnings_cents",
    "progress_percent",
    "tier_for_amount",
]
